from __future__ import annotations

import asyncio
import json
import zipfile
from pathlib import Path

import pytest
from botocore.exceptions import ClientError
from conftest import FakeS3, write_workflow_source

from temporal_generic_worker.deployment.artifact_store import ArtifactStore
from temporal_generic_worker.deployment.bundle import verify_checksum
from temporal_generic_worker.models import TriggerSpec, WorkflowMetadata


def test_list_names_returns_top_level_prefixes(
    tmp_path: Path, fake_s3: FakeS3, store: ArtifactStore
) -> None:
    source = write_workflow_source(tmp_path / "src", "orders")
    fake_s3.deploy(source, name="orders", version="v1")
    fake_s3.deploy(source, name="billing", version="v3")

    assert asyncio.run(store.list_names()) == ["billing", "orders"]


def test_list_names_is_empty_when_bucket_missing() -> None:
    store = ArtifactStore(bucket="workflows", client=FakeS3(bucket_exists=False))

    assert asyncio.run(store.list_names()) == []


def test_latest_version_and_metadata(tmp_path: Path, fake_s3: FakeS3, store: ArtifactStore) -> None:
    source = write_workflow_source(tmp_path / "src", "orders")
    fake_s3.deploy(source, name="orders", version="v2", task_queue="order-queue")
    fake_s3.objects["orders/latest"] = b" v2\n"

    assert asyncio.run(store.get_latest_version("orders")) == "v2"
    metadata = asyncio.run(store.get_metadata("orders", "v2"))
    assert metadata is not None
    assert metadata.task_queue == "order-queue"

    assert asyncio.run(store.get_latest_version("missing")) is None
    assert asyncio.run(store.get_metadata("orders", "v9")) is None


def test_unexpected_errors_propagate(fake_s3: FakeS3, store: ArtifactStore) -> None:
    fake_s3.fail_keys["orders/latest"] = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetObject"
    )

    with pytest.raises(ClientError):
        asyncio.run(store.get_latest_version("orders"))


def test_fetch_bundle_downloads_archive(tmp_path: Path, fake_s3: FakeS3, store: ArtifactStore) -> None:
    source = write_workflow_source(tmp_path / "src", "orders")
    fake_s3.deploy(source, name="orders", version="v1")

    destination = asyncio.run(store.fetch_bundle("orders", "v1", tmp_path / "cache" / "orders.zip"))

    with zipfile.ZipFile(destination) as archive:
        assert archive.namelist() == ["workflow.py"]


def test_publish_writes_latest_pointer_last(tmp_path: Path) -> None:
    fake_s3 = FakeS3(bucket_exists=False)
    store = ArtifactStore(bucket="workflows", client=fake_s3)
    source = write_workflow_source(tmp_path / "src", "orders")
    metadata = WorkflowMetadata(
        name="orders",
        version="v1",
        task_queue="order-queue",
        trigger=TriggerSpec.model_validate({"type": "manual"}),
        deployed_by="ci",
    )

    published = asyncio.run(store.publish(source, metadata))

    assert fake_s3.bucket_exists
    assert fake_s3.put_order == [
        "orders/v1/bundle.zip",
        "orders/v1/metadata.json",
        "orders/latest",
    ]
    assert published.checksum.startswith("sha256:")
    assert published.deployed_at

    stored = json.loads(fake_s3.objects["orders/v1/metadata.json"])
    assert stored["taskQueue"] == "order-queue"
    assert stored["deployedBy"] == "ci"
    assert stored["checksum"] == published.checksum

    bundle = tmp_path / "bundle.zip"
    bundle.write_bytes(fake_s3.objects["orders/v1/bundle.zip"])
    assert verify_checksum(bundle, published.checksum)
