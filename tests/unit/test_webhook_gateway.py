"""HTTP-level tests for the shared webhook gateway."""

from __future__ import annotations

import asyncio
import base64
from typing import Any

import pytest
from conftest import FakeEngine, make_definition
from fastapi.testclient import TestClient

from temporal_generic_worker.errors import GatewayStartupError, RouteConflictError
from temporal_generic_worker.models import WebhookAuthConfig
from temporal_generic_worker.server.auth import is_authorized
from temporal_generic_worker.server.gateway import WebhookGateway, WebhookRequest, WebhookRoute
from temporal_generic_worker.triggers.webhook import WebhookTrigger


class _NeverStarts:
    started = False
    should_exit = False

    async def serve(self) -> None:
        raise SystemExit(1)


def _route(
    path: str = "/orders",
    *,
    workflow: str = "orders",
    method: str = "POST",
    auth: WebhookAuthConfig | None = None,
    calls: list[WebhookRequest] | None = None,
) -> WebhookRoute:
    async def handler(request: WebhookRequest) -> dict[str, Any]:
        if calls is not None:
            calls.append(request)
        return {"success": True, "workflowId": "wf-1"}

    return WebhookRoute(method=method, path=path, workflow_name=workflow, handler=handler, auth=auth)


def test_health() -> None:
    client = TestClient(WebhookGateway().app)

    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["timestamp"]


def test_unknown_route_is_404() -> None:
    gateway = WebhookGateway()
    gateway.add_route(_route())
    client = TestClient(gateway.app)

    assert client.post("/webhooks/unknown").status_code == 404
    assert client.get("/webhooks/orders").status_code == 404


def test_public_route_dispatches_body_and_query() -> None:
    calls: list[WebhookRequest] = []
    gateway = WebhookGateway()
    gateway.add_route(_route(calls=calls))
    client = TestClient(gateway.app)

    resp = client.post("/webhooks/orders?source=shop", json={"orderId": "o-1"})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "workflowId": "wf-1"}
    assert calls[0].body == {"orderId": "o-1"}
    assert calls[0].query == {"source": "shop"}


def test_non_json_body_is_forwarded_as_text() -> None:
    calls: list[WebhookRequest] = []
    gateway = WebhookGateway()
    gateway.add_route(_route(calls=calls))
    client = TestClient(gateway.app)

    client.post("/webhooks/orders", content=b"plain text", headers={"content-type": "text/plain"})
    client.post("/webhooks/orders")

    assert calls[0].body == "plain text"
    assert calls[1].body is None


@pytest.mark.parametrize(
    "auth,good,bad",
    [
        (
            WebhookAuthConfig(type="bearer", token="s3cret"),
            {"Authorization": "Bearer s3cret"},
            {"Authorization": "Bearer wrong"},
        ),
        (
            WebhookAuthConfig(type="api-key", token="k-1"),
            {"X-API-Key": "k-1"},
            {"X-Other-Key": "k-1"},
        ),
        (
            WebhookAuthConfig.model_validate(
                {"type": "api-key", "token": "k-1", "headerName": "X-Token"}
            ),
            {"x-token": "k-1"},
            {"X-API-Key": "k-1"},
        ),
        (
            WebhookAuthConfig(type="basic", token="user:pass"),
            {"Authorization": "Basic " + base64.b64encode(b"user:pass").decode()},
            {"Authorization": "Basic " + base64.b64encode(b"user:nope").decode()},
        ),
    ],
)
def test_auth_is_enforced_before_the_handler(
    auth: WebhookAuthConfig, good: dict[str, str], bad: dict[str, str]
) -> None:
    calls: list[WebhookRequest] = []
    gateway = WebhookGateway()
    gateway.add_route(_route(auth=auth, calls=calls))
    client = TestClient(gateway.app)

    rejected = client.post("/webhooks/orders", json={}, headers=bad)
    missing = client.post("/webhooks/orders", json={})
    accepted = client.post("/webhooks/orders", json={}, headers=good)

    assert rejected.status_code == 401
    assert rejected.json() == {"success": False, "error": "Unauthorized"}
    assert missing.status_code == 401
    assert accepted.status_code == 200
    assert len(calls) == 1


def test_malformed_basic_credentials_are_rejected() -> None:
    auth = WebhookAuthConfig(type="basic", token="user:pass")

    assert not is_authorized(auth, {"authorization": "Basic !!!not-base64"})
    assert not is_authorized(auth, {"authorization": "Bearer user:pass"})
    assert is_authorized(None, {})


def test_handler_failure_returns_500() -> None:
    engine = FakeEngine(fail_start=RuntimeError("engine unavailable"))
    gateway = WebhookGateway()
    trigger = WebhookTrigger(make_definition("orders", kind="webhook"), engine, gateway)
    gateway.add_route(trigger.route())
    client = TestClient(gateway.app)

    resp = client.post("/webhooks/orders", json={"orderId": "o-1"})

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "engine unavailable"}


def test_webhook_trigger_end_to_end_strips_credentials() -> None:
    engine = FakeEngine()
    gateway = WebhookGateway()
    definition = make_definition(
        "orders",
        kind="webhook",
        task_queue="order-queue",
        config={"path": "/orders/process", "auth": {"type": "api-key", "token": "k-1"}},
    )
    trigger = WebhookTrigger(definition, engine, gateway)
    gateway.add_route(trigger.route())
    client = TestClient(gateway.app)

    resp = client.post(
        "/webhooks/orders/process",
        json={"orderId": "o-1"},
        headers={"X-API-Key": "k-1", "X-Request-Id": "r-1"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["taskQueue"] == "order-queue"
    assert body["workflowId"] == engine.started[0]["workflow_id"]

    (payload,) = engine.started[0]["args"]
    assert payload["body"] == {"orderId": "o-1"}
    assert payload["headers"]["x-request-id"] == "r-1"
    assert "x-api-key" not in payload["headers"]


def test_route_conflict_between_workflows() -> None:
    gateway = WebhookGateway()
    gateway.add_route(_route(workflow="a"))

    with pytest.raises(RouteConflictError):
        gateway.add_route(_route(workflow="b"))

    # Same workflow re-registering, or another method on the same path, is fine.
    gateway.add_route(_route(workflow="a"))
    gateway.add_route(_route(workflow="b", method="PUT"))
    assert len(gateway.routes()) == 2


def test_removed_route_stops_matching() -> None:
    gateway = WebhookGateway()
    route = _route()
    gateway.add_route(route)
    gateway.remove_route(route)
    client = TestClient(gateway.app)

    assert client.post("/webhooks/orders").status_code == 404


def test_server_startup_failure_releases_reference() -> None:
    gateway = WebhookGateway(server_factory=lambda _app: _NeverStarts())

    with pytest.raises(GatewayStartupError):
        asyncio.run(gateway.acquire())

    assert gateway.references == 0
    assert not gateway.running
