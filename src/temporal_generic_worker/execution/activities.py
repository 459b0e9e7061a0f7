"""Activities registered on every worker.

Workflow bundles call these by name, e.g.
`workflow.execute_activity("log_message", "hi", start_to_close_timeout=...)`.
They are synchronous and run on the worker's activity thread pool.
"""

from __future__ import annotations

import logging
from typing import Any

import requests
from pydantic import BaseModel, Field
from temporalio import activity

logger = logging.getLogger(__name__)


class HttpRequestParams(BaseModel):
    url: str
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None


@activity.defn(name="log_message")
def log_message(message: str) -> None:
    info = activity.info()
    logger.info(
        message,
        extra={"workflow_id": info.workflow_id, "workflow_type": info.workflow_type},
    )


@activity.defn(name="http_request")
def http_request(params: dict[str, Any]) -> Any:
    """Perform an HTTP request; JSON responses are decoded, others returned as text."""

    request = HttpRequestParams.model_validate(params)
    resp = requests.request(
        request.method.upper(),
        request.url,
        headers=request.headers,
        json=request.body if request.body is not None else None,
        timeout=30,
    )
    if not resp.ok:
        raise RuntimeError(f"HTTP request failed with status {resp.status_code}")

    content_type = resp.headers.get("content-type", "")
    if "application/json" in content_type:
        return resp.json()
    return resp.text


BUILTIN_ACTIVITIES = [log_message, http_request]
