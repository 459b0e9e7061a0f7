"""Test configuration, fakes and fixtures."""

from __future__ import annotations

import asyncio
import io
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from temporal_generic_worker.deployment.artifact_store import (
    ArtifactStore,
    bundle_key,
    latest_key,
    metadata_key,
)
from temporal_generic_worker.deployment.bundle import build_bundle, sha256_hex
from temporal_generic_worker.errors import ScheduleAlreadyExistsError
from temporal_generic_worker.execution.engine import ScheduleTiming
from temporal_generic_worker.execution.workers import ManagedWorkerGroup
from temporal_generic_worker.models import TriggerSpec, WorkflowDefinition

WORKFLOW_SOURCE = '''
from temporalio import workflow


@workflow.defn(name="{name}")
class Generated:
    @workflow.run
    async def run(self) -> str:
        return "{marker}"
'''


def make_definition(
    name: str = "orders",
    *,
    namespace: str = "default",
    task_queue: str = "q1",
    version: str = "v1",
    kind: str = "manual",
    config: dict[str, Any] | None = None,
) -> WorkflowDefinition:
    return WorkflowDefinition(
        name=name,
        namespace=namespace,
        task_queue=task_queue,
        version=version,
        trigger=TriggerSpec.model_validate({"type": kind, "config": config}),
    )


def write_workflow_source(directory: Path, name: str, marker: str = "v1") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "workflow.py").write_text(
        WORKFLOW_SOURCE.format(name=name, marker=marker), encoding="utf-8"
    )
    return directory


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@dataclass
class FakeRun:
    id: str
    value: Any = None

    async def result(self) -> Any:
        return self.value


@dataclass
class FakeEngine:
    """In-memory `WorkflowEngine`."""

    result: Any = None
    existing_schedules: set[str] = field(default_factory=set)
    fail_start: Exception | None = None
    fail_connect: Exception | None = None
    fail_delete: Exception | None = None
    started: list[dict[str, Any]] = field(default_factory=list)
    schedule_calls: list[tuple[str, str, ScheduleTiming | None]] = field(default_factory=list)
    clients: dict[str, object] = field(default_factory=dict)
    closed: bool = False

    async def client_for(self, namespace: str) -> Any:
        if self.fail_connect is not None:
            raise self.fail_connect
        return self.clients.setdefault(namespace, object())

    async def start_workflow(
        self,
        definition: WorkflowDefinition,
        *,
        workflow_id: str,
        args: list[Any],
        memo: dict[str, Any] | None = None,
    ) -> FakeRun:
        if self.fail_start is not None:
            raise self.fail_start
        self.started.append(
            {
                "workflow": definition.name,
                "workflow_id": workflow_id,
                "args": args,
                "memo": memo,
                "task_queue": definition.task_queue,
            }
        )
        return FakeRun(id=workflow_id, value=self.result)

    async def create_schedule(
        self, definition: WorkflowDefinition, *, schedule_id: str, timing: ScheduleTiming
    ) -> None:
        self.schedule_calls.append(("create", schedule_id, timing))
        if schedule_id in self.existing_schedules:
            raise ScheduleAlreadyExistsError(schedule_id)
        self.existing_schedules.add(schedule_id)

    async def update_schedule(
        self, definition: WorkflowDefinition, *, schedule_id: str, timing: ScheduleTiming
    ) -> None:
        self.schedule_calls.append(("update", schedule_id, timing))

    async def delete_schedule(self, definition: WorkflowDefinition, *, schedule_id: str) -> None:
        self.schedule_calls.append(("delete", schedule_id, None))
        if self.fail_delete is not None:
            raise self.fail_delete
        self.existing_schedules.discard(schedule_id)

    async def close(self) -> None:
        self.closed = True


class FakeBody(io.BytesIO):
    pass


class FakePaginator:
    def __init__(self, s3: FakeS3) -> None:
        self._s3 = s3

    def paginate(self, *, Bucket: str, Delimiter: str) -> list[dict[str, Any]]:
        prefixes = sorted({key.split(Delimiter, 1)[0] for key in self._s3.objects})
        return [{"CommonPrefixes": [{"Prefix": f"{p}{Delimiter}"} for p in prefixes]}]


class FakeS3:
    """Just enough of the boto3 S3 client for `ArtifactStore`."""

    def __init__(self, *, bucket_exists: bool = True) -> None:
        self.bucket_exists = bucket_exists
        self.objects: dict[str, bytes] = {}
        self.put_order: list[str] = []
        self.fail_keys: dict[str, Exception] = {}

    def head_bucket(self, *, Bucket: str) -> dict[str, Any]:
        if not self.bucket_exists:
            raise _client_error("404", "HeadBucket")
        return {}

    def create_bucket(self, *, Bucket: str) -> dict[str, Any]:
        self.bucket_exists = True
        return {}

    def get_paginator(self, operation: str) -> FakePaginator:
        assert operation == "list_objects_v2"
        return FakePaginator(self)

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        if Key in self.fail_keys:
            raise self.fail_keys[Key]
        if Key not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        return {"Body": FakeBody(self.objects[Key])}

    def download_file(self, Bucket: str, Key: str, Filename: str) -> None:
        if Key in self.fail_keys:
            raise self.fail_keys[Key]
        if Key not in self.objects:
            raise _client_error("404", "HeadObject")
        Path(Filename).write_bytes(self.objects[Key])

    def put_object(self, *, Bucket: str, Key: str, Body: bytes, ContentType: str) -> dict[str, Any]:
        self.objects[Key] = Body
        self.put_order.append(Key)
        return {}

    def deploy(
        self,
        source_dir: Path,
        *,
        name: str,
        version: str,
        task_queue: str = "q1",
        namespace: str = "default",
        trigger: dict[str, Any] | None = None,
        checksum: str | None = None,
    ) -> None:
        """Write a deployment the way `ArtifactStore.publish` lays it out."""

        bundle = build_bundle(source_dir)
        metadata = {
            "name": name,
            "version": version,
            "namespace": namespace,
            "taskQueue": task_queue,
            "trigger": trigger or {"type": "manual"},
            "deployedAt": "2025-01-01T00:00:00+00:00",
            "checksum": checksum if checksum is not None else f"sha256:{sha256_hex(bundle)}",
        }
        self.objects[bundle_key(name, version)] = bundle
        self.objects[metadata_key(name, version)] = json.dumps(metadata).encode("utf-8")
        self.objects[latest_key(name)] = version.encode("utf-8")

    def undeploy(self, name: str) -> None:
        for key in [k for k in self.objects if k.startswith(f"{name}/")]:
            del self.objects[key]


class FakeWorker:
    def __init__(self, group: ManagedWorkerGroup) -> None:
        self.task_queue = group.task_queue
        self.workflow_names = list(group.workflow_names)
        self.shutdown_calls = 0
        self._stopped = asyncio.Event()

    async def run(self) -> None:
        await self._stopped.wait()

    async def shutdown(self) -> None:
        self.shutdown_calls += 1
        self._stopped.set()


class FakeWorkerFactory:
    def __init__(self) -> None:
        self.created: list[FakeWorker] = []
        self.fail_for: set[str] = set()
        self.closed = False

    def create(self, client: Any, group: ManagedWorkerGroup) -> FakeWorker:
        if group.key in self.fail_for:
            raise RuntimeError(f"cannot build worker for {group.key}")
        worker = FakeWorker(group)
        self.created.append(worker)
        return worker

    def close(self) -> None:
        self.closed = True


class ManualClock:
    """Injectable sleep that parks until the test releases a tick."""

    def __init__(self) -> None:
        self.sleeps: list[float] = []
        self._ticks: asyncio.Queue[None] | None = None

    def _queue(self) -> asyncio.Queue[None]:
        if self._ticks is None:
            self._ticks = asyncio.Queue()
        return self._ticks

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await self._queue().get()

    async def tick(self) -> None:
        self._queue().put_nowait(None)
        # Let the sleeper wake up and run its cycle.
        for _ in range(20):
            await asyncio.sleep(0)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def store(fake_s3: FakeS3) -> ArtifactStore:
    return ArtifactStore(bucket="workflows", client=fake_s3)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
