"""Shared HTTP gateway for webhook triggers.

All webhook triggers share one FastAPI app and one uvicorn server. The server is
started when the first webhook trigger acquires it and stopped when the last one
releases it. Routes live in a table keyed by (method, path) rather than in
FastAPI's router, so they can be removed again when a trigger stops.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from temporal_generic_worker import __version__
from temporal_generic_worker.errors import GatewayStartupError, RouteConflictError
from temporal_generic_worker.models import WebhookAuthConfig
from temporal_generic_worker.server.auth import is_authorized

logger = logging.getLogger(__name__)

WEBHOOK_PREFIX = "/webhooks"
WEBHOOK_METHODS = ("GET", "POST", "PUT", "DELETE")


@dataclass(frozen=True, slots=True)
class WebhookRequest:
    body: Any
    query: dict[str, str]
    headers: dict[str, str]


WebhookHandler = Callable[[WebhookRequest], Awaitable[dict[str, Any]]]


@dataclass(frozen=True, slots=True)
class WebhookRoute:
    method: str
    path: str
    workflow_name: str
    handler: WebhookHandler
    auth: WebhookAuthConfig | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.method.upper(), self.path)


class ServerHandle(Protocol):
    started: bool
    should_exit: bool

    async def serve(self) -> None: ...


ServerFactory = Callable[[FastAPI], ServerHandle]


class _GatewayServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the host."""

    def install_signal_handlers(self) -> None:
        return None

    def capture_signals(self) -> contextlib.AbstractContextManager[None]:
        return contextlib.nullcontext()


def uvicorn_server_factory(host: str, port: int) -> ServerFactory:
    def _factory(app: FastAPI) -> ServerHandle:
        config = uvicorn.Config(app, host=host, port=port, log_config=None, lifespan="off")
        return _GatewayServer(config)

    return _factory


async def _read_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


class WebhookGateway:
    def __init__(
        self,
        *,
        host: str = "0.0.0.0",
        port: int = 3000,
        server_factory: ServerFactory | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._server_factory = server_factory or uvicorn_server_factory(host, port)
        self._routes: dict[tuple[str, str], WebhookRoute] = {}
        self._refs = 0
        self._server: ServerHandle | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._start_lock = asyncio.Lock()
        self.app = create_app(self)

    @property
    def running(self) -> bool:
        return self._server is not None

    @property
    def references(self) -> int:
        return self._refs

    def routes(self) -> list[WebhookRoute]:
        return list(self._routes.values())

    def add_route(self, route: WebhookRoute) -> None:
        existing = self._routes.get(route.key)
        if existing is not None and existing.workflow_name != route.workflow_name:
            raise RouteConflictError(route.key[0], route.path, existing.workflow_name)
        self._routes[route.key] = route
        logger.info(
            "Webhook route registered",
            extra={
                "workflow": route.workflow_name,
                "method": route.key[0],
                "path": f"{WEBHOOK_PREFIX}{route.path}",
                "auth": route.auth.type if route.auth else None,
            },
        )

    def remove_route(self, route: WebhookRoute) -> None:
        existing = self._routes.get(route.key)
        if existing is not None and existing.workflow_name == route.workflow_name:
            del self._routes[route.key]

    async def acquire(self) -> None:
        """Take a reference on the HTTP server, starting it on first use."""

        self._refs += 1
        try:
            async with self._start_lock:
                if self._server is None:
                    await self._start_server()
        except BaseException:
            self._refs -= 1
            raise

    async def release(self) -> None:
        """Drop a reference; the last release stops the HTTP server."""

        self._refs = max(0, self._refs - 1)
        if self._refs == 0:
            await self._stop_server()

    async def close(self) -> None:
        self._refs = 0
        await self._stop_server()

    async def _start_server(self) -> None:
        server = self._server_factory(self.app)
        task = asyncio.create_task(self._serve(server), name="webhook-gateway")
        while not server.started:
            if task.done():
                error = task.exception()
                raise GatewayStartupError(
                    f"Webhook server failed to start on {self._host}:{self._port}"
                ) from error
            await asyncio.sleep(0.05)

        self._server = server
        self._serve_task = task
        logger.info(
            "Webhook server listening", extra={"host": self._host, "port": self._port}
        )

    @staticmethod
    async def _serve(server: ServerHandle) -> None:
        try:
            await server.serve()
        except SystemExit as e:
            # uvicorn exits the process when it cannot bind.
            raise GatewayStartupError(f"Webhook server exited with code {e.code}") from e

    async def _stop_server(self) -> None:
        server, task = self._server, self._serve_task
        self._server = None
        self._serve_task = None
        if server is None:
            return
        server.should_exit = True
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Webhook server stopped")

    async def dispatch(self, request: Request, path: str) -> JSONResponse:
        route = self._routes.get((request.method.upper(), path))
        if route is None:
            return _error(404, "Not Found")

        if not is_authorized(route.auth, request.headers):
            logger.warning(
                "Rejected unauthorized webhook request",
                extra={"workflow": route.workflow_name, "path": path},
            )
            return _error(401, "Unauthorized")

        webhook_request = WebhookRequest(
            body=await _read_body(request),
            query=dict(request.query_params),
            headers=dict(request.headers),
        )
        try:
            content = await route.handler(webhook_request)
        except Exception as e:
            logger.exception("Failed to start workflow", extra={"workflow": route.workflow_name})
            return _error(500, str(e) or type(e).__name__)
        return JSONResponse(content=content)


def create_app(gateway: WebhookGateway) -> FastAPI:
    app = FastAPI(
        title="Temporal Generic Worker",
        version=__version__,
        description="Webhook triggers for deployed workflows.",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(tz=UTC).isoformat()}

    @app.api_route(f"{WEBHOOK_PREFIX}/{{path:path}}", methods=list(WEBHOOK_METHODS))
    async def webhook(path: str, request: Request) -> JSONResponse:
        return await gateway.dispatch(request, f"/{path}")

    return app
