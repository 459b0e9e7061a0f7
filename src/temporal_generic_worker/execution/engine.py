"""Temporal client access.

All namespaces share one lazily-created service connection; a namespace-bound
client is created on first use and cached. Triggers and the worker pool only see
the `WorkflowEngine` protocol, which keeps them testable without a Temporal server.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol

from temporalio.client import (
    Client,
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleIntervalSpec,
    ScheduleSpec,
    ScheduleUpdate,
    ScheduleUpdateInput,
)
from temporalio.service import ConnectConfig, ServiceClient

from temporal_generic_worker.errors import ScheduleAlreadyExistsError
from temporal_generic_worker.models import WorkflowDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScheduleTiming:
    """When a schedule fires: cron expressions, or a fixed interval."""

    cron_expressions: list[str] = field(default_factory=list)
    interval: timedelta | None = None


class WorkflowRun(Protocol):
    """Handle of a started workflow execution."""

    @property
    def id(self) -> str: ...

    async def result(self) -> Any: ...


class WorkflowEngine(Protocol):
    async def client_for(self, namespace: str) -> Client: ...

    async def start_workflow(
        self,
        definition: WorkflowDefinition,
        *,
        workflow_id: str,
        args: list[Any],
        memo: dict[str, Any] | None = None,
    ) -> WorkflowRun: ...

    async def create_schedule(
        self, definition: WorkflowDefinition, *, schedule_id: str, timing: ScheduleTiming
    ) -> None: ...

    async def update_schedule(
        self, definition: WorkflowDefinition, *, schedule_id: str, timing: ScheduleTiming
    ) -> None: ...

    async def delete_schedule(self, definition: WorkflowDefinition, *, schedule_id: str) -> None: ...

    async def close(self) -> None: ...


def to_schedule_spec(timing: ScheduleTiming) -> ScheduleSpec:
    if timing.cron_expressions:
        return ScheduleSpec(cron_expressions=list(timing.cron_expressions))
    if timing.interval is None:
        raise ValueError("Schedule timing needs cron expressions or an interval")
    return ScheduleSpec(intervals=[ScheduleIntervalSpec(every=timing.interval, offset=timedelta(0))])


class TemporalEngine:
    """`WorkflowEngine` backed by the temporalio SDK."""

    def __init__(self, *, address: str) -> None:
        self._address = address
        self._service: ServiceClient | None = None
        self._clients: dict[str, Client] = {}
        self._connect_lock = asyncio.Lock()

    async def _service_client(self) -> ServiceClient:
        async with self._connect_lock:
            if self._service is None:
                self._service = await ServiceClient.connect(
                    ConnectConfig(target_host=self._address)
                )
                logger.info("Connected to Temporal", extra={"address": self._address})
            return self._service

    async def client_for(self, namespace: str) -> Client:
        existing = self._clients.get(namespace)
        if existing is not None:
            return existing

        service = await self._service_client()
        client = self._clients.setdefault(namespace, Client(service, namespace=namespace))
        logger.info("Created Temporal client", extra={"namespace": namespace})
        return client

    async def start_workflow(
        self,
        definition: WorkflowDefinition,
        *,
        workflow_id: str,
        args: list[Any],
        memo: dict[str, Any] | None = None,
    ) -> WorkflowRun:
        client = await self.client_for(definition.namespace)
        return await client.start_workflow(
            definition.name,
            args=args,
            id=workflow_id,
            task_queue=definition.task_queue,
            memo=memo,
        )

    async def create_schedule(
        self, definition: WorkflowDefinition, *, schedule_id: str, timing: ScheduleTiming
    ) -> None:
        client = await self.client_for(definition.namespace)
        schedule = Schedule(
            action=ScheduleActionStartWorkflow(
                definition.name,
                args=[],
                id=f"{schedule_id}-run",
                task_queue=definition.task_queue,
            ),
            spec=to_schedule_spec(timing),
        )
        try:
            await client.create_schedule(schedule_id, schedule)
        except ScheduleAlreadyRunningError as e:
            raise ScheduleAlreadyExistsError(schedule_id) from e

    async def update_schedule(
        self, definition: WorkflowDefinition, *, schedule_id: str, timing: ScheduleTiming
    ) -> None:
        client = await self.client_for(definition.namespace)
        spec = to_schedule_spec(timing)

        def _replace_spec(update: ScheduleUpdateInput) -> ScheduleUpdate:
            current = update.description.schedule
            return ScheduleUpdate(schedule=dataclasses.replace(current, spec=spec))

        await client.get_schedule_handle(schedule_id).update(_replace_spec)

    async def delete_schedule(self, definition: WorkflowDefinition, *, schedule_id: str) -> None:
        client = await self.client_for(definition.namespace)
        await client.get_schedule_handle(schedule_id).delete()

    async def close(self) -> None:
        # temporalio has no explicit close for a service connection; dropping the
        # references lets the core runtime release it.
        self._clients.clear()
        self._service = None
        logger.info("Temporal connection released")
