"""The process-wide runtime objects, built once and passed explicitly."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from temporal_generic_worker.deployment.artifact_store import ArtifactStore
from temporal_generic_worker.deployment.watcher import DefinitionWatcher
from temporal_generic_worker.execution.engine import TemporalEngine, WorkflowEngine
from temporal_generic_worker.execution.loader import BundleLoader
from temporal_generic_worker.execution.workers import (
    ExecutionWorkerPool,
    TemporalWorkerFactory,
)
from temporal_generic_worker.runtime.config import WorkerSettings
from temporal_generic_worker.runtime.reconciler import Reconciler
from temporal_generic_worker.server.gateway import WebhookGateway
from temporal_generic_worker.triggers.registry import TriggerRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeContext:
    settings: WorkerSettings
    engine: WorkflowEngine
    store: ArtifactStore
    gateway: WebhookGateway
    pool: ExecutionWorkerPool
    registry: TriggerRegistry
    watcher: DefinitionWatcher
    reconciler: Reconciler

    @classmethod
    def from_settings(cls, settings: WorkerSettings) -> RuntimeContext:
        engine = TemporalEngine(address=settings.temporal_address)
        store = ArtifactStore.from_settings(settings)
        gateway = WebhookGateway(host=settings.webhook_host, port=settings.webhook_port)
        watcher = DefinitionWatcher(
            store=store,
            workflows_dir=settings.workflows_dir,
            interval_seconds=settings.sync_interval_seconds,
        )
        factory = TemporalWorkerFactory(
            loader=BundleLoader(watcher.local_path),
            max_concurrent_activities=settings.max_concurrent_activities,
            max_concurrent_workflows=settings.max_concurrent_workflows,
        )
        pool = ExecutionWorkerPool(engine=engine, worker_factory=factory)
        registry = TriggerRegistry(engine=engine, gateway=gateway)
        reconciler = Reconciler(pool=pool, registry=registry)
        watcher.on_change(reconciler)
        return cls(
            settings=settings,
            engine=engine,
            store=store,
            gateway=gateway,
            pool=pool,
            registry=registry,
            watcher=watcher,
            reconciler=reconciler,
        )

    async def start(self) -> None:
        """Run the first sync (which starts workers and triggers) and begin watching."""

        await self.watcher.start()
        logger.info(
            "Worker host started",
            extra={
                "workflows": sorted(self.watcher.tracked()),
                "workers": self.pool.status(),
                "triggers": self.registry.status(),
            },
        )

    async def shutdown(self) -> None:
        """Stop watching, then triggers, then workers (and the engine), then the gateway.

        Every step runs even if an earlier one fails.
        """

        await _shutdown_step("watcher", self.watcher.stop)
        await _shutdown_step("triggers", self.registry.stop_all)
        await _shutdown_step("workers", self.pool.stop_all)
        await _shutdown_step("gateway", self.gateway.close)
        logger.info("Worker host stopped")

    def status(self) -> dict[str, object]:
        return {"workers": self.pool.status(), "triggers": self.registry.status()}


async def _shutdown_step(name: str, step: Callable[[], Awaitable[None]]) -> None:
    try:
        await step()
    except Exception:
        logger.exception("Shutdown step failed", extra={"component": name})
