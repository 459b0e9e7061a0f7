"""Temporal Generic Worker.

A long-running host process that:
- discovers workflow bundles deployed to an S3-compatible artifact store
- keeps one Temporal worker per namespace/task-queue pair
- drives runs through schedule, polling, webhook or manual triggers
"""

__version__ = "0.1.0"

from temporal_generic_worker.runtime.config import WorkerSettings

__all__ = ["__version__", "WorkerSettings"]
