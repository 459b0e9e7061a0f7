"""Interval trigger with an optional HTTP readiness probe."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import requests

from temporal_generic_worker.execution.engine import WorkflowEngine
from temporal_generic_worker.models import (
    PollingTriggerConfig,
    TriggerKind,
    WorkflowDefinition,
)
from temporal_generic_worker.triggers.base import Trigger

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 30

Sleep = Callable[[float], Awaitable[None]]


def _fetch(session: requests.Session, endpoint: str) -> Any:
    response = session.get(endpoint, timeout=PROBE_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response.json()


class PollingTrigger(Trigger):
    """Checks once on start, then every `intervalMs`.

    Without an endpoint every check fires. With one, a check fires only when the
    endpoint answers 2xx with a non-empty JSON array or object, which is then
    passed to the workflow as its single argument.
    """

    kind = TriggerKind.POLLING

    def __init__(
        self,
        definition: WorkflowDefinition,
        engine: WorkflowEngine,
        *,
        sleep: Sleep = asyncio.sleep,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(definition, engine)
        self._config = PollingTriggerConfig.model_validate(definition.trigger.config or {})
        self._sleep = sleep
        self._session = session
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._checking = False

    @property
    def config(self) -> PollingTriggerConfig:
        return self._config

    async def _activate(self) -> None:
        self._stopping = False
        await self.check()
        self._task = asyncio.create_task(self._loop(), name=f"poll-{self.workflow_name}")

    async def _deactivate(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is not None:
            # A check already in flight runs to completion.
            if not self._checking:
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._session is not None:
            self._session.close()
            self._session = None

    async def _loop(self) -> None:
        while not self._stopping:
            await self._sleep(self._config.interval_seconds)
            if self._stopping:
                return
            try:
                await self.check()
            except Exception:
                logger.exception("Polling check failed", extra=self._log_extra())

    async def check(self) -> bool:
        """Run one probe; start the workflow if it says so. Returns True if a run was started."""

        self._checking = True
        try:
            should_fire, data = await self._probe()
            if not should_fire:
                return False
            try:
                await self._start_run(
                    workflow_id=self.generate_workflow_id("poll"),
                    args=[data] if data is not None else [],
                )
            except Exception:
                logger.exception("Failed to start polled workflow", extra=self._log_extra())
                return False
            return True
        finally:
            self._checking = False

    async def _probe(self) -> tuple[bool, Any]:
        endpoint = self._config.endpoint
        if endpoint is None:
            return True, None

        if self._session is None:
            self._session = requests.Session()
        try:
            data = await asyncio.to_thread(_fetch, self._session, endpoint)
        except (requests.RequestException, ValueError) as e:
            logger.warning(
                "Polling probe failed", extra={**self._log_extra(), "endpoint": endpoint, "error": str(e)}
            )
            return False, None

        if isinstance(data, (list, dict)) and data:
            return True, data
        logger.debug("Polling probe returned nothing to process", extra=self._log_extra())
        return False, None
