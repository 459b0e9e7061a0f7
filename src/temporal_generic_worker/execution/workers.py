"""Temporal worker pool.

One worker per namespace/task-queue pair. Workflows are registered first (which
only records them in their group); workers are materialised by `start_all` and
rebuilt by `restart_worker`. New workflow code is only picked up by constructing
a new worker.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Protocol

from temporalio.client import Client
from temporalio.worker import UnsandboxedWorkflowRunner, Worker

from temporal_generic_worker.execution.activities import BUILTIN_ACTIVITIES
from temporal_generic_worker.execution.engine import WorkflowEngine
from temporal_generic_worker.execution.loader import BundleLoader, activity_name
from temporal_generic_worker.models import WorkflowDefinition, worker_key

logger = logging.getLogger(__name__)


class WorkerHandle(Protocol):
    async def run(self) -> None: ...

    async def shutdown(self) -> None: ...


@dataclass(slots=True)
class ManagedWorkerGroup:
    key: str
    namespace: str
    task_queue: str
    workflow_names: list[str] = field(default_factory=list)
    worker: WorkerHandle | None = None
    run_task: asyncio.Task[None] | None = None
    stopping: bool = False

    @property
    def materialized(self) -> bool:
        return self.worker is not None


class WorkerFactory(Protocol):
    def create(self, client: Client, group: ManagedWorkerGroup) -> WorkerHandle: ...

    def close(self) -> None: ...


class TemporalWorkerFactory:
    """Builds temporalio workers from the bundles of a group's workflows."""

    def __init__(
        self,
        *,
        loader: BundleLoader,
        max_concurrent_activities: int,
        max_concurrent_workflows: int,
    ) -> None:
        self._loader = loader
        self._max_concurrent_activities = max_concurrent_activities
        self._max_concurrent_workflows = max_concurrent_workflows
        self._executor: ThreadPoolExecutor | None = None

    def _activity_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_concurrent_activities,
                thread_name_prefix="activity",
            )
        return self._executor

    def create(self, client: Client, group: ManagedWorkerGroup) -> WorkerHandle:
        bundles = self._loader.load(group.workflow_names)

        activities: dict[str, Any] = {}
        for fn in [*BUILTIN_ACTIVITIES, *bundles.activities]:
            name = activity_name(fn)
            if name is None or name in activities:
                continue
            activities[name] = fn

        # Bundle modules are loaded from files, which the workflow sandbox cannot re-import.
        return Worker(
            client,
            task_queue=group.task_queue,
            workflows=bundles.workflows,
            activities=list(activities.values()),
            activity_executor=self._activity_executor(),
            max_concurrent_activities=self._max_concurrent_activities,
            max_concurrent_workflow_tasks=self._max_concurrent_workflows,
            workflow_runner=UnsandboxedWorkflowRunner(),
        )

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None


class ExecutionWorkerPool:
    def __init__(self, *, engine: WorkflowEngine, worker_factory: WorkerFactory) -> None:
        self._engine = engine
        self._factory = worker_factory
        self._groups: dict[str, ManagedWorkerGroup] = {}

    @property
    def groups(self) -> dict[str, ManagedWorkerGroup]:
        return dict(self._groups)

    def key_for(self, workflow_name: str) -> str | None:
        for key, group in self._groups.items():
            if workflow_name in group.workflow_names:
                return key
        return None

    def register_workflow(self, definition: WorkflowDefinition) -> ManagedWorkerGroup:
        """Record a workflow in the group for its namespace/task queue.

        Never touches a running worker. A workflow already served by a different
        group is moved; both groups need a restart to reflect the move.
        """

        key = definition.worker_key
        previous = self.key_for(definition.name)
        if previous is not None and previous != key:
            self._groups[previous].workflow_names.remove(definition.name)
            logger.info(
                "Moved workflow to a different worker group",
                extra={"workflow": definition.name, "from": previous, "to": key},
            )

        group = self._groups.get(key)
        if group is not None:
            if definition.name not in group.workflow_names:
                group.workflow_names.append(definition.name)
                logger.info(
                    "Added workflow to existing worker group",
                    extra={"workflow": definition.name, "worker": key},
                )
            return group

        group = ManagedWorkerGroup(
            key=key,
            namespace=definition.namespace,
            task_queue=definition.task_queue,
            workflow_names=[definition.name],
        )
        self._groups[key] = group
        logger.info(
            "Registered worker group", extra={"workflow": definition.name, "worker": key}
        )
        return group

    def unregister_workflow(self, workflow_name: str) -> str | None:
        """Remove a workflow from its group; returns the group key it was in."""

        key = self.key_for(workflow_name)
        if key is None:
            return None
        self._groups[key].workflow_names.remove(workflow_name)
        logger.info("Unregistered workflow", extra={"workflow": workflow_name, "worker": key})
        return key

    async def start_all(self) -> None:
        """Materialise a worker for every group that does not have one yet.

        Engine connection failures propagate. A group whose bundles fail to load is
        logged and left unmaterialised; the next `start_all` retries it.
        """

        pending = [g for g in self._groups.values() if g.worker is None and g.workflow_names]
        for group in pending:
            client = await self._engine.client_for(group.namespace)
            if group.worker is not None or self._groups.get(group.key) is not group:
                continue
            self._materialize(group, client)

    async def restart_worker(self, namespace: str, task_queue: str) -> None:
        key = worker_key(namespace, task_queue)
        group = self._groups.get(key)
        if group is not None and group.worker is None and not group.workflow_names:
            del self._groups[key]
            return
        if group is None or group.worker is None or group.stopping:
            logger.debug("No running worker to restart", extra={"worker": key})
            return

        group.stopping = True
        try:
            await self._shutdown(group)
        finally:
            group.stopping = False
        group.worker = None
        group.run_task = None

        if not group.workflow_names:
            if self._groups.get(key) is group:
                del self._groups[key]
            logger.info("Worker group has no workflows left; removed", extra={"worker": key})
            return

        client = await self._engine.client_for(namespace)
        if group.worker is None and self._groups.get(key) is group:
            self._materialize(group, client)
            logger.info(
                "Worker restarted", extra={"worker": key, "workflows": group.workflow_names}
            )

    async def stop_all(self) -> None:
        materialized = [g for g in self._groups.values() if g.worker is not None]
        await asyncio.gather(*(self._shutdown(g) for g in materialized))
        self._groups.clear()
        self._factory.close()
        await self._engine.close()
        logger.info("All workers stopped")

    def status(self) -> dict[str, dict[str, object]]:
        return {
            key: {
                "namespace": group.namespace,
                "taskQueue": group.task_queue,
                "workflows": list(group.workflow_names),
                "running": group.materialized,
            }
            for key, group in self._groups.items()
        }

    def _materialize(self, group: ManagedWorkerGroup, client: Client) -> None:
        try:
            worker = self._factory.create(client, group)
        except Exception:
            logger.exception(
                "Failed to create worker",
                extra={"worker": group.key, "workflows": group.workflow_names},
            )
            return

        group.worker = worker
        group.run_task = asyncio.create_task(self._run(group.key, worker), name=f"worker-{group.key}")
        logger.info(
            "Worker started", extra={"worker": group.key, "workflows": group.workflow_names}
        )

    @staticmethod
    async def _run(key: str, worker: WorkerHandle) -> None:
        try:
            await worker.run()
        except Exception:
            logger.exception("Worker stopped with error", extra={"worker": key})
            return
        logger.info("Worker run finished", extra={"worker": key})

    @staticmethod
    async def _shutdown(group: ManagedWorkerGroup) -> None:
        worker, run_task = group.worker, group.run_task
        if worker is None:
            return
        logger.info("Shutdown signal sent to worker", extra={"worker": group.key})
        try:
            await worker.shutdown()
        except Exception:
            logger.exception("Worker shutdown failed", extra={"worker": group.key})
            if run_task is not None:
                run_task.cancel()
        if run_task is not None:
            await asyncio.gather(run_task, return_exceptions=True)
