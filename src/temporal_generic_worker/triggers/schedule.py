from __future__ import annotations

import logging
from datetime import timedelta

from temporal_generic_worker.errors import ScheduleAlreadyExistsError
from temporal_generic_worker.execution.engine import ScheduleTiming, WorkflowEngine
from temporal_generic_worker.models import (
    ScheduleTriggerConfig,
    TriggerKind,
    WorkflowDefinition,
)
from temporal_generic_worker.triggers.base import Trigger

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = timedelta(hours=1)


class ScheduleTrigger(Trigger):
    """Delegates timing to a Temporal schedule named `schedule-<workflow>`."""

    kind = TriggerKind.SCHEDULE

    def __init__(self, definition: WorkflowDefinition, engine: WorkflowEngine) -> None:
        super().__init__(definition, engine)
        self._config = ScheduleTriggerConfig.model_validate(definition.trigger.config or {})
        self.schedule_id = f"schedule-{definition.name}"

    def timing(self) -> ScheduleTiming:
        if self._config.cron_expression:
            return ScheduleTiming(cron_expressions=[self._config.cron_expression])
        if self._config.interval_ms:
            return ScheduleTiming(interval=timedelta(milliseconds=self._config.interval_ms))
        return ScheduleTiming(interval=DEFAULT_INTERVAL)

    async def _activate(self) -> None:
        timing = self.timing()
        try:
            await self._engine.create_schedule(
                self._definition, schedule_id=self.schedule_id, timing=timing
            )
            logger.info("Schedule created", extra={**self._log_extra(), "schedule": self.schedule_id})
        except ScheduleAlreadyExistsError:
            await self._engine.update_schedule(
                self._definition, schedule_id=self.schedule_id, timing=timing
            )
            logger.info("Schedule updated", extra={**self._log_extra(), "schedule": self.schedule_id})

    async def _deactivate(self) -> None:
        try:
            await self._engine.delete_schedule(self._definition, schedule_id=self.schedule_id)
        except Exception:
            logger.exception(
                "Failed to delete schedule", extra={**self._log_extra(), "schedule": self.schedule_id}
            )
