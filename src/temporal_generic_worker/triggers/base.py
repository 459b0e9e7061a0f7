"""Common trigger behaviour.

A trigger is a two-state machine (idle <-> running). `start()` on a running
trigger and `stop()` on an idle one are no-ops, never errors.
"""

from __future__ import annotations

import logging
import random
import string
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar

from temporal_generic_worker.execution.engine import WorkflowEngine, WorkflowRun
from temporal_generic_worker.models import TriggerKind, WorkflowDefinition

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


class TriggerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


def generate_workflow_id(prefix: str) -> str:
    """`{prefix}-{epoch millis}-{6 random base36 chars}`.

    Uniqueness is best-effort; two ids minted in the same millisecond can collide.
    """

    timestamp = int(time.time() * 1000)
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=6))
    return f"{prefix}-{timestamp}-{suffix}"


class Trigger(ABC):
    kind: ClassVar[TriggerKind]

    def __init__(self, definition: WorkflowDefinition, engine: WorkflowEngine) -> None:
        self._definition = definition
        self._engine = engine
        self._state = TriggerState.IDLE

    @property
    def definition(self) -> WorkflowDefinition:
        return self._definition

    @property
    def workflow_name(self) -> str:
        return self._definition.name

    @property
    def namespace(self) -> str:
        return self._definition.namespace

    @property
    def task_queue(self) -> str:
        return self._definition.task_queue

    @property
    def state(self) -> TriggerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is TriggerState.RUNNING

    def _log_extra(self) -> dict[str, object]:
        return {
            "workflow": self.workflow_name,
            "trigger": self.kind.value,
            "worker": self._definition.worker_key,
        }

    def serves(self, definition: WorkflowDefinition) -> bool:
        """True if this trigger already behaves as `definition` requires."""

        return (
            self._definition.namespace == definition.namespace
            and self._definition.task_queue == definition.task_queue
            and self._definition.trigger == definition.trigger
        )

    async def start(self) -> None:
        if self.running:
            logger.debug("Trigger already running", extra=self._log_extra())
            return
        await self._activate()
        self._state = TriggerState.RUNNING
        logger.info("Trigger started", extra=self._log_extra())

    async def stop(self) -> None:
        if not self.running:
            logger.debug("Trigger already stopped", extra=self._log_extra())
            return
        try:
            await self._deactivate()
        finally:
            self._state = TriggerState.IDLE
        logger.info("Trigger stopped", extra=self._log_extra())

    @abstractmethod
    async def _activate(self) -> None:
        """Acquire whatever external resource the trigger needs."""

    @abstractmethod
    async def _deactivate(self) -> None:
        """Release what `_activate` acquired."""

    def generate_workflow_id(self, prefix: str | None = None) -> str:
        return generate_workflow_id(prefix or self.workflow_name)

    async def _start_run(
        self,
        *,
        workflow_id: str,
        args: list[Any],
        memo: dict[str, Any] | None = None,
    ) -> WorkflowRun:
        run = await self._engine.start_workflow(
            self._definition, workflow_id=workflow_id, args=args, memo=memo
        )
        logger.info("Started workflow", extra={**self._log_extra(), "workflow_id": run.id})
        return run
