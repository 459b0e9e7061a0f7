"""Workflow bundle packaging and on-disk layout.

A bundle is a zip archive of a workflow directory. Once extracted, the directory
holds `workflow.py` (required) and optionally `activities.py`.
"""

from __future__ import annotations

import hashlib
import io
import logging
import re
import shutil
import zipfile
from pathlib import Path

from temporal_generic_worker.errors import BundleError

logger = logging.getLogger(__name__)

WORKFLOW_MODULE = "workflow.py"
ACTIVITIES_MODULE = "activities.py"

_SHA256_RE = re.compile(r"^(?:sha256:)?([0-9a-fA-F]{64})$")
_SKIPPED_PARTS = {"__pycache__", ".git", ".venv"}


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_bundle(source_dir: Path) -> bytes:
    """Zip a workflow directory into bundle bytes.

    Entries are written in sorted order so identical sources give identical checksums.
    """

    if not (source_dir / WORKFLOW_MODULE).is_file():
        raise BundleError(f"{source_dir} does not contain {WORKFLOW_MODULE}")

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in sorted(source_dir.rglob("*")):
            relative = path.relative_to(source_dir)
            if not path.is_file() or _SKIPPED_PARTS.intersection(relative.parts):
                continue
            if path.suffix == ".pyc":
                continue
            info = zipfile.ZipInfo(relative.as_posix(), date_time=(1980, 1, 1, 0, 0, 0))
            info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(info, path.read_bytes())
    return buffer.getvalue()


def verify_checksum(bundle_path: Path, expected: str) -> bool:
    """Check a downloaded bundle against its recorded sha256 checksum.

    Returns False when `expected` is not a sha256 digest (nothing to verify).
    Raises BundleError on mismatch.
    """

    match = _SHA256_RE.match(expected.strip())
    if match is None:
        return False
    actual = sha256_hex(bundle_path.read_bytes())
    if actual.lower() != match.group(1).lower():
        raise BundleError(
            f"Checksum mismatch for {bundle_path.name}: expected {match.group(1)}, got {actual}"
        )
    return True


def extract_bundle(bundle_path: Path, target_dir: Path) -> Path:
    """Replace `target_dir` with the contents of the bundle."""

    try:
        archive = zipfile.ZipFile(bundle_path)
    except zipfile.BadZipFile as e:
        raise BundleError(f"Not a valid bundle archive: {bundle_path.name}") from e

    with archive:
        root = target_dir.resolve()
        for member in archive.namelist():
            destination = (root / member).resolve()
            if destination != root and root not in destination.parents:
                raise BundleError(f"Bundle member escapes target directory: {member}")

        if target_dir.exists():
            shutil.rmtree(target_dir)
        target_dir.mkdir(parents=True)
        archive.extractall(target_dir)

    if not (target_dir / WORKFLOW_MODULE).is_file():
        raise BundleError(f"Bundle {bundle_path.name} does not contain {WORKFLOW_MODULE}")
    return target_dir


def remove_bundle(target_dir: Path) -> bool:
    """Best-effort removal of an extracted bundle directory."""

    if not target_dir.exists():
        return False
    try:
        shutil.rmtree(target_dir)
    except OSError:
        logger.warning(
            "Failed to clean up local workflow files",
            exc_info=True,
            extra={"path": str(target_dir)},
        )
        return False
    logger.info("Cleaned up local workflow files", extra={"path": str(target_dir)})
    return True
