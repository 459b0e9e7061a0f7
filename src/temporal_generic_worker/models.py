"""Deployment and trigger models.

`metadata.json` documents are written by the deploy tooling in camelCase, so the
pydantic models accept both the JSON aliases and the Python field names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TriggerKind(str, Enum):
    SCHEDULE = "schedule"
    POLLING = "polling"
    WEBHOOK = "webhook"
    MANUAL = "manual"


def worker_key(namespace: str, task_queue: str) -> str:
    """Identity of the worker group serving a namespace/task-queue pair."""

    return f"{namespace}:{task_queue}"


class TriggerSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: TriggerKind = Field(alias="type")
    config: dict[str, Any] | None = None


class WorkflowMetadata(BaseModel):
    """Contents of `<name>/<version>/metadata.json`."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    namespace: str = Field(default="default", min_length=1)
    task_queue: str = Field(alias="taskQueue", min_length=1)
    trigger: TriggerSpec
    deployed_at: str = Field(default="", alias="deployedAt")
    deployed_by: str | None = Field(default=None, alias="deployedBy")
    checksum: str = ""

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ScheduleTriggerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cron_expression: str | None = Field(default=None, alias="cronExpression")
    interval_ms: float | None = Field(default=None, alias="intervalMs", gt=0)


class PollingTriggerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    interval_ms: float = Field(default=60_000, alias="intervalMs", gt=0)
    endpoint: str | None = None

    @field_validator("endpoint")
    @classmethod
    def _require_http_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"endpoint must be an http(s) URL: {value!r}")
        return value

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000


DEFAULT_API_KEY_HEADER = "X-API-Key"


class WebhookAuthConfig(BaseModel):
    """Route-level authentication.

    For `basic`, `token` holds the expected `user:password` pair.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["bearer", "api-key", "basic"]
    token: str = Field(min_length=1)
    header_name: str | None = Field(default=None, alias="headerName")

    @property
    def api_key_header(self) -> str:
        return self.header_name or DEFAULT_API_KEY_HEADER


class WebhookTriggerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    path: str = Field(min_length=1)
    method: Literal["GET", "POST", "PUT", "DELETE"] = "POST"
    auth: WebhookAuthConfig | None = None

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @field_validator("path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        value = value.strip()
        return value if value.startswith("/") else f"/{value}"


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """A deployed workflow as seen by the worker pool and the trigger registry."""

    name: str
    namespace: str
    task_queue: str
    version: str
    trigger: TriggerSpec
    checksum: str = ""

    @property
    def worker_key(self) -> str:
        return worker_key(self.namespace, self.task_queue)

    @classmethod
    def from_metadata(cls, metadata: WorkflowMetadata) -> WorkflowDefinition:
        return cls(
            name=metadata.name,
            namespace=metadata.namespace,
            task_queue=metadata.task_queue,
            version=metadata.version,
            trigger=metadata.trigger,
            checksum=metadata.checksum,
        )


@dataclass(frozen=True, slots=True)
class TrackedDeployment:
    """Local record of a downloaded deployment."""

    definition: WorkflowDefinition
    metadata: WorkflowMetadata
    local_path: Path

    @property
    def version(self) -> str:
        return self.definition.version


@dataclass(slots=True)
class DefinitionChanges:
    """Aggregate result of one sync cycle."""

    added: list[WorkflowDefinition] = field(default_factory=list)
    updated: list[WorkflowDefinition] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.added or self.updated or self.removed)


@dataclass(frozen=True, slots=True)
class StartWorkflowOptions:
    workflow_id: str | None = None
    args: list[Any] = field(default_factory=list)
    memo: dict[str, Any] | None = None
