"""Watch the artifact store for deployed workflows and keep local copies current.

Each sync cycle:
- lists the deployed workflow names
- resolves the `latest` version pointer of each name
- downloads new or changed versions and extracts them under `workflows_dir/<name>`
- forgets (and deletes locally) names that disappeared from the store
- emits one `DefinitionChanges` notification if anything changed

A failure to fetch one workflow is logged and skipped; it never aborts the cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from temporal_generic_worker.deployment.artifact_store import ArtifactStore
from temporal_generic_worker.deployment.bundle import extract_bundle, remove_bundle, verify_checksum
from temporal_generic_worker.errors import BundleError
from temporal_generic_worker.models import (
    DefinitionChanges,
    TrackedDeployment,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[DefinitionChanges], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


class DefinitionWatcher:
    def __init__(
        self,
        *,
        store: ArtifactStore,
        workflows_dir: Path,
        interval_seconds: float,
        on_change: ChangeHandler | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._workflows_dir = workflows_dir
        self._interval_seconds = interval_seconds
        self._on_change = on_change
        self._sleep = sleep
        self._tracked: dict[str, TrackedDeployment] = {}
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._in_cycle = False

    @property
    def workflows_dir(self) -> Path:
        return self._workflows_dir

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_change(self, handler: ChangeHandler) -> None:
        self._on_change = handler

    def tracked(self) -> dict[str, TrackedDeployment]:
        return dict(self._tracked)

    def get(self, name: str) -> TrackedDeployment | None:
        return self._tracked.get(name)

    def local_path(self, name: str) -> Path | None:
        tracked = self._tracked.get(name)
        return tracked.local_path if tracked is not None else None

    async def start(self) -> None:
        """Run one eager sync, then keep syncing on the configured interval.

        Errors from the eager sync propagate: a process that cannot reach its
        engine or store at startup should fail loudly.
        """

        if self.running:
            logger.debug("Workflow watcher already running")
            return

        self._workflows_dir.mkdir(parents=True, exist_ok=True)
        self._stopping = False
        await self.sync()
        self._task = asyncio.create_task(self._loop(), name="definition-watcher")
        logger.info(
            "Workflow watcher started",
            extra={"interval_seconds": self._interval_seconds, "dir": str(self._workflows_dir)},
        )

    async def stop(self) -> None:
        """Suppress further cycles.

        A cycle that is already running finishes; only the pending sleep is cancelled.
        """

        task, self._task = self._task, None
        if task is None:
            return
        self._stopping = True
        if not self._in_cycle:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Workflow watcher stopped")

    async def _loop(self) -> None:
        while not self._stopping:
            await self._sleep(self._interval_seconds)
            if self._stopping:
                break
            self._in_cycle = True
            try:
                await self.sync()
            except Exception:
                logger.exception("Workflow sync failed")
            finally:
                self._in_cycle = False

    async def sync(self) -> DefinitionChanges:
        """Run a single sync cycle and notify the change handler."""

        remote_names = await self._store.list_names()
        changes = DefinitionChanges()

        for name in remote_names:
            try:
                latest = await self._store.get_latest_version(name)
            except Exception:
                logger.exception("Failed to resolve latest version", extra={"workflow": name})
                continue
            if latest is None:
                logger.debug("No latest pointer; skipping", extra={"workflow": name})
                continue

            tracked = self._tracked.get(name)
            if tracked is not None and tracked.version == latest:
                continue

            deployment = await self._download(name, latest)
            if deployment is None:
                continue
            self._tracked[name] = deployment
            if tracked is None:
                changes.added.append(deployment.definition)
            else:
                changes.updated.append(deployment.definition)

        remote = set(remote_names)
        for name in list(self._tracked):
            if name in remote:
                continue
            del self._tracked[name]
            changes.removed.append(name)
            remove_bundle(self._workflows_dir / name)

        if changes.empty:
            return changes

        logger.info(
            "Workflow sync",
            extra={
                "added": [d.name for d in changes.added],
                "updated": [d.name for d in changes.updated],
                "removed": changes.removed,
            },
        )
        if self._on_change is not None:
            await self._on_change(changes)
        return changes

    async def _download(self, name: str, version: str) -> TrackedDeployment | None:
        try:
            metadata = await self._store.get_metadata(name, version)
            if metadata is None:
                logger.error(
                    "No metadata found", extra={"workflow": name, "version": version}
                )
                return None
            if metadata.name != name or metadata.version != version:
                raise BundleError(
                    f"Metadata {metadata.name}@{metadata.version} does not match "
                    f"deployment {name}@{version}"
                )

            archive = self._workflows_dir / f"{name}-{version}.zip"
            try:
                await self._store.fetch_bundle(name, version, archive)
                verify_checksum(archive, metadata.checksum)
                local_path = extract_bundle(archive, self._workflows_dir / name)
            finally:
                archive.unlink(missing_ok=True)
        except Exception:
            logger.exception(
                "Failed to download workflow", extra={"workflow": name, "version": version}
            )
            return None

        logger.info(
            "Downloaded and extracted workflow",
            extra={"workflow": name, "version": version, "path": str(local_path)},
        )
        return TrackedDeployment(
            definition=WorkflowDefinition.from_metadata(metadata),
            metadata=metadata,
            local_path=local_path,
        )
