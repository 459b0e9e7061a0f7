"""Exceptions raised by the worker runtime."""

from __future__ import annotations


class WorkerRuntimeError(Exception):
    """Base class for runtime errors."""


class TriggerNotRunningError(WorkerRuntimeError):
    """Raised when a stopped trigger is asked to start a run."""

    def __init__(self, workflow_name: str) -> None:
        super().__init__(f"Manual trigger for {workflow_name} is not running")
        self.workflow_name = workflow_name


class UnknownTriggerKindError(WorkerRuntimeError, ValueError):
    pass


class RouteConflictError(WorkerRuntimeError):
    """Raised when two workflows claim the same webhook route."""

    def __init__(self, method: str, path: str, owner: str) -> None:
        super().__init__(f"Webhook route {method} {path} is already claimed by {owner}")
        self.method = method
        self.path = path
        self.owner = owner


class ScheduleAlreadyExistsError(WorkerRuntimeError):
    def __init__(self, schedule_id: str) -> None:
        super().__init__(f"Schedule already exists: {schedule_id}")
        self.schedule_id = schedule_id


class BundleError(WorkerRuntimeError):
    """A workflow bundle could not be downloaded, verified, extracted or imported."""


class GatewayStartupError(WorkerRuntimeError):
    """The shared webhook HTTP server failed to start."""
