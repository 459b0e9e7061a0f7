"""Apply watcher change notifications to the worker pool and the trigger registry.

- added: register triggers and workflows, then start workers before triggers
- updated: regroup the workflow, restart the affected worker groups, and
  replace the trigger only if its routing or trigger spec changed
- removed: best-effort teardown of trigger, group membership and worker

A definition whose trigger cannot be built is skipped with an error log; the
rest of the batch proceeds. Engine connection failures propagate.
"""

from __future__ import annotations

import logging

from temporal_generic_worker.execution.workers import ExecutionWorkerPool
from temporal_generic_worker.models import DefinitionChanges, WorkflowDefinition
from temporal_generic_worker.triggers.registry import TriggerRegistry

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(self, *, pool: ExecutionWorkerPool, registry: TriggerRegistry) -> None:
        self._pool = pool
        self._registry = registry

    async def __call__(self, changes: DefinitionChanges) -> None:
        if changes.empty:
            return
        if changes.added:
            await self.apply_added(changes.added)
        if changes.updated:
            await self.apply_updated(changes.updated)
        if changes.removed:
            await self.apply_removed(changes.removed)
        logger.info(
            "Runtime status",
            extra={"workers": self._pool.status(), "triggers": self._registry.status()},
        )

    async def apply_added(self, definitions: list[WorkflowDefinition]) -> None:
        for definition in definitions:
            try:
                self._registry.register(definition)
            except Exception:
                logger.exception(
                    "Invalid trigger; workflow not registered",
                    extra={"workflow": definition.name, "version": definition.version},
                )
                continue
            self._pool.register_workflow(definition)

        await self._pool.start_all()
        await self._registry.start_all()

    async def apply_updated(self, definitions: list[WorkflowDefinition]) -> None:
        restarts: dict[str, tuple[str, str]] = {}
        for definition in definitions:
            previous = self._pool.groups.get(self._pool.key_for(definition.name) or "")
            if previous is not None:
                restarts[previous.key] = (previous.namespace, previous.task_queue)
            group = self._pool.register_workflow(definition)
            restarts[group.key] = (group.namespace, group.task_queue)
            logger.info(
                "Workflow updated",
                extra={"workflow": definition.name, "version": definition.version, "worker": group.key},
            )

        for namespace, task_queue in restarts.values():
            await self._pool.restart_worker(namespace, task_queue)
        await self._pool.start_all()

        for definition in definitions:
            trigger = self._registry.get(definition.name)
            if trigger is not None and trigger.serves(definition):
                continue
            try:
                await self._registry.replace(definition)
            except Exception:
                logger.exception(
                    "Failed to refresh trigger",
                    extra={"workflow": definition.name, "version": definition.version},
                )

    async def apply_removed(self, names: list[str]) -> None:
        restarts: dict[str, tuple[str, str]] = {}
        for name in names:
            try:
                await self._registry.unregister(name)
            except Exception:
                logger.exception("Failed to stop trigger of removed workflow", extra={"workflow": name})

            key = self._pool.unregister_workflow(name)
            group = self._pool.groups.get(key) if key is not None else None
            if group is not None:
                restarts[group.key] = (group.namespace, group.task_queue)
            logger.info("Workflow removed", extra={"workflow": name})

        for key, (namespace, task_queue) in restarts.items():
            try:
                await self._pool.restart_worker(namespace, task_queue)
            except Exception:
                logger.exception("Failed to restart worker after removal", extra={"worker": key})
