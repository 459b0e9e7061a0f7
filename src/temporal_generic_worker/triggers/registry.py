"""Trigger registry: at most one trigger per workflow name."""

from __future__ import annotations

import asyncio
import logging

from temporal_generic_worker.errors import UnknownTriggerKindError
from temporal_generic_worker.execution.engine import WorkflowEngine
from temporal_generic_worker.models import TriggerKind, WorkflowDefinition
from temporal_generic_worker.server.gateway import WebhookGateway
from temporal_generic_worker.triggers.base import Trigger
from temporal_generic_worker.triggers.manual import ManualTrigger
from temporal_generic_worker.triggers.polling import PollingTrigger, Sleep
from temporal_generic_worker.triggers.schedule import ScheduleTrigger
from temporal_generic_worker.triggers.webhook import WebhookTrigger

logger = logging.getLogger(__name__)


class TriggerRegistry:
    def __init__(
        self,
        *,
        engine: WorkflowEngine,
        gateway: WebhookGateway,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._gateway = gateway
        self._sleep = sleep
        self._triggers: dict[str, Trigger] = {}

    def create(self, definition: WorkflowDefinition) -> Trigger:
        """Build the trigger variant for a definition.

        Raises:
            UnknownTriggerKindError: If the trigger kind is not supported.
            pydantic.ValidationError: If the trigger config is invalid for its kind.
        """
        kind = definition.trigger.kind
        if kind is TriggerKind.SCHEDULE:
            return ScheduleTrigger(definition, self._engine)
        elif kind is TriggerKind.POLLING:
            return PollingTrigger(definition, self._engine, sleep=self._sleep)
        elif kind is TriggerKind.WEBHOOK:
            return WebhookTrigger(definition, self._engine, self._gateway)
        elif kind is TriggerKind.MANUAL:
            return ManualTrigger(definition, self._engine)
        else:
            raise UnknownTriggerKindError(f"Unknown trigger type: {kind}")

    def register(self, definition: WorkflowDefinition) -> Trigger:
        """Create and record a trigger. Does not start it.

        Registering a name that already has a trigger returns the existing one.
        """
        existing = self._triggers.get(definition.name)
        if existing is not None:
            logger.info("Trigger already registered", extra={"workflow": definition.name})
            return existing

        trigger = self.create(definition)
        self._triggers[definition.name] = trigger
        logger.info(
            "Trigger registered",
            extra={"workflow": definition.name, "trigger": trigger.kind.value},
        )
        return trigger

    def get(self, workflow_name: str) -> Trigger | None:
        return self._triggers.get(workflow_name)

    def manual(self, workflow_name: str) -> ManualTrigger | None:
        trigger = self._triggers.get(workflow_name)
        return trigger if isinstance(trigger, ManualTrigger) else None

    def names(self) -> list[str]:
        return list(self._triggers)

    async def unregister(self, workflow_name: str) -> bool:
        """Stop and forget a trigger. Returns False if none was registered."""

        trigger = self._triggers.pop(workflow_name, None)
        if trigger is None:
            return False
        await trigger.stop()
        logger.info("Trigger unregistered", extra={"workflow": workflow_name})
        return True

    async def replace(self, definition: WorkflowDefinition) -> Trigger:
        """Swap the trigger of a workflow for one built from `definition` and start it."""

        await self.unregister(definition.name)
        trigger = self.register(definition)
        await trigger.start()
        return trigger

    async def start_all(self) -> None:
        """Start every registered trigger. One failing trigger does not block the others."""

        triggers = list(self._triggers.values())
        await asyncio.gather(*(self._start_one(t) for t in triggers))

    async def stop_all(self) -> None:
        triggers = list(self._triggers.values())
        await asyncio.gather(*(self._stop_one(t) for t in triggers))
        self._triggers.clear()

    def status(self) -> dict[str, dict[str, object]]:
        return {
            name: {"running": trigger.running, "type": trigger.kind.value}
            for name, trigger in self._triggers.items()
        }

    @staticmethod
    async def _start_one(trigger: Trigger) -> None:
        try:
            await trigger.start()
        except Exception:
            logger.exception(
                "Failed to start trigger",
                extra={"workflow": trigger.workflow_name, "trigger": trigger.kind.value},
            )

    @staticmethod
    async def _stop_one(trigger: Trigger) -> None:
        try:
            await trigger.stop()
        except Exception:
            logger.exception(
                "Failed to stop trigger",
                extra={"workflow": trigger.workflow_name, "trigger": trigger.kind.value},
            )
