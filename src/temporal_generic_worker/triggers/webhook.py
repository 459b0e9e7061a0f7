from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from temporal_generic_worker.execution.engine import WorkflowEngine
from temporal_generic_worker.models import (
    TriggerKind,
    WebhookTriggerConfig,
    WorkflowDefinition,
)
from temporal_generic_worker.server.gateway import (
    WEBHOOK_PREFIX,
    WebhookGateway,
    WebhookRequest,
    WebhookRoute,
)
from temporal_generic_worker.triggers.base import Trigger

logger = logging.getLogger(__name__)

SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "x-api-key"})


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Drop credential-bearing headers before they reach workflow history."""

    return {k: v for k, v in headers.items() if k.lower() not in SENSITIVE_HEADERS}


class WebhookTrigger(Trigger):
    kind = TriggerKind.WEBHOOK

    def __init__(
        self,
        definition: WorkflowDefinition,
        engine: WorkflowEngine,
        gateway: WebhookGateway,
    ) -> None:
        super().__init__(definition, engine)
        self._gateway = gateway
        config = {"path": f"/{definition.name}", **(definition.trigger.config or {})}
        self._config = WebhookTriggerConfig.model_validate(config)

    @property
    def config(self) -> WebhookTriggerConfig:
        return self._config

    @property
    def url_path(self) -> str:
        return f"{WEBHOOK_PREFIX}{self._config.path}"

    def route(self) -> WebhookRoute:
        return WebhookRoute(
            method=self._config.method,
            path=self._config.path,
            workflow_name=self.workflow_name,
            handler=self.handle,
            auth=self._config.auth,
        )

    async def _activate(self) -> None:
        route = self.route()
        self._gateway.add_route(route)
        try:
            await self._gateway.acquire()
        except BaseException:
            self._gateway.remove_route(route)
            raise

    async def _deactivate(self) -> None:
        self._gateway.remove_route(self.route())
        await self._gateway.release()

    async def handle(self, request: WebhookRequest) -> dict[str, Any]:
        payload = {
            "body": request.body,
            "query": request.query,
            "headers": sanitize_headers(request.headers),
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }
        run = await self._start_run(
            workflow_id=self.generate_workflow_id("webhook"), args=[payload]
        )
        return {
            "success": True,
            "workflowId": run.id,
            "namespace": self.namespace,
            "taskQueue": self.task_queue,
            "message": f"Workflow {self.workflow_name} started",
        }
