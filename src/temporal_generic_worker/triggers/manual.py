from __future__ import annotations

from typing import Any

from temporal_generic_worker.errors import TriggerNotRunningError
from temporal_generic_worker.execution.engine import WorkflowRun
from temporal_generic_worker.models import StartWorkflowOptions, TriggerKind
from temporal_generic_worker.triggers.base import Trigger


class ManualTrigger(Trigger):
    """Starts runs on explicit request only. Refuses to execute while stopped."""

    kind = TriggerKind.MANUAL

    async def _activate(self) -> None:
        return None

    async def _deactivate(self) -> None:
        return None

    async def _run(self, options: StartWorkflowOptions | None) -> WorkflowRun:
        if not self.running:
            raise TriggerNotRunningError(self.workflow_name)
        options = options or StartWorkflowOptions()
        return await self._start_run(
            workflow_id=options.workflow_id or self.generate_workflow_id("manual"),
            args=list(options.args),
            memo=options.memo,
        )

    async def execute(self, options: StartWorkflowOptions | None = None) -> str:
        run = await self._run(options)
        return run.id

    async def execute_and_wait(self, options: StartWorkflowOptions | None = None) -> Any:
        run = await self._run(options)
        return await run.result()
