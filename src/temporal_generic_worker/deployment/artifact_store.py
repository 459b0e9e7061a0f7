"""S3-compatible artifact store holding versioned workflow bundles.

Object-key layout inside the bucket:

    <name>/latest                      current version string
    <name>/<version>/metadata.json     WorkflowMetadata
    <name>/<version>/bundle.zip        zipped workflow directory

boto3 is blocking; every call is pushed to a worker thread so the event loop
keeps serving webhooks and timers while a sync cycle downloads bundles.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from temporal_generic_worker.deployment.bundle import build_bundle, sha256_hex
from temporal_generic_worker.models import WorkflowMetadata
from temporal_generic_worker.runtime.config import WorkerSettings

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound"}


def latest_key(name: str) -> str:
    return f"{name}/latest"


def metadata_key(name: str, version: str) -> str:
    return f"{name}/{version}/metadata.json"


def bundle_key(name: str, version: str) -> str:
    return f"{name}/{version}/bundle.zip"


def _is_missing(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    return code in _MISSING_CODES


class ArtifactStore:
    """Async facade over a boto3 S3 client."""

    def __init__(
        self,
        *,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str | None = None,
        client: Any | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("Artifact store bucket is required")
        self._bucket = bucket
        self._endpoint_url = endpoint_url
        self._access_key = access_key
        self._secret_key = secret_key
        self._region = region
        self._client = client

    @classmethod
    def from_settings(cls, settings: WorkerSettings) -> ArtifactStore:
        return cls(
            bucket=settings.artifact_store_bucket,
            endpoint_url=settings.artifact_store_endpoint,
            access_key=settings.artifact_store_access_key,
            secret_key=settings.artifact_store_secret_key,
            region=settings.artifact_store_region,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    def _s3(self) -> Any:
        if self._client is None:
            # Path-style addressing keeps MinIO endpoints without wildcard DNS working.
            self._client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                aws_access_key_id=self._access_key,
                aws_secret_access_key=self._secret_key,
                region_name=self._region,
                config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
            logger.debug(
                "Created artifact store client",
                extra={"endpoint": self._endpoint_url, "bucket": self._bucket},
            )
        return self._client

    async def list_names(self) -> list[str]:
        """Names of all deployed workflows (top-level prefixes in the bucket)."""

        return await asyncio.to_thread(self._list_names)

    def _list_names(self) -> list[str]:
        s3 = self._s3()
        try:
            s3.head_bucket(Bucket=self._bucket)
        except ClientError as e:
            if _is_missing(e):
                logger.info("Bucket does not exist yet", extra={"bucket": self._bucket})
                return []
            raise

        names: set[str] = set()
        paginator = s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self._bucket, Delimiter="/"):
            for prefix in page.get("CommonPrefixes", []):
                name = str(prefix["Prefix"]).rstrip("/")
                if name:
                    names.add(name)
        return sorted(names)

    async def get_latest_version(self, name: str) -> str | None:
        raw = await asyncio.to_thread(self._get_text, latest_key(name))
        if raw is None:
            return None
        version = raw.strip()
        return version or None

    async def get_metadata(self, name: str, version: str) -> WorkflowMetadata | None:
        raw = await asyncio.to_thread(self._get_text, metadata_key(name, version))
        if raw is None:
            return None
        return WorkflowMetadata.model_validate(json.loads(raw))

    async def fetch_bundle(self, name: str, version: str, destination: Path) -> Path:
        """Download the bundle archive for `name@version` to `destination`."""

        destination.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(
            self._s3().download_file, self._bucket, bundle_key(name, version), str(destination)
        )
        return destination

    def _get_text(self, key: str) -> str | None:
        try:
            response = self._s3().get_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return None
            raise
        body = response["Body"]
        try:
            return body.read().decode("utf-8")
        finally:
            body.close()

    async def publish(self, source_dir: Path, metadata: WorkflowMetadata) -> WorkflowMetadata:
        """Deploy a workflow directory as a new version.

        The `latest` pointer is written last so a concurrent sync never sees a
        pointer to a version whose objects are not uploaded yet.
        """

        bundle = build_bundle(source_dir)
        published = metadata.model_copy(
            update={
                "checksum": f"sha256:{sha256_hex(bundle)}",
                "deployed_at": metadata.deployed_at or datetime.now(tz=UTC).isoformat(),
            }
        )
        await asyncio.to_thread(self._publish, published, bundle)
        logger.info(
            "Published workflow",
            extra={"workflow": published.name, "version": published.version},
        )
        return published

    def _publish(self, metadata: WorkflowMetadata, bundle: bytes) -> None:
        s3 = self._s3()
        try:
            s3.head_bucket(Bucket=self._bucket)
        except ClientError as e:
            if not _is_missing(e):
                raise
            s3.create_bucket(Bucket=self._bucket)
            logger.info("Created bucket", extra={"bucket": self._bucket})

        s3.put_object(
            Bucket=self._bucket,
            Key=bundle_key(metadata.name, metadata.version),
            Body=bundle,
            ContentType="application/zip",
        )
        s3.put_object(
            Bucket=self._bucket,
            Key=metadata_key(metadata.name, metadata.version),
            Body=json.dumps(metadata.to_json(), indent=2).encode("utf-8"),
            ContentType="application/json",
        )
        s3.put_object(
            Bucket=self._bucket,
            Key=latest_key(metadata.name),
            Body=metadata.version.encode("utf-8"),
            ContentType="text/plain",
        )
