"""Trigger variants that decide when a deployed workflow runs."""

from temporal_generic_worker.triggers.base import Trigger, TriggerState, generate_workflow_id
from temporal_generic_worker.triggers.manual import ManualTrigger
from temporal_generic_worker.triggers.polling import PollingTrigger
from temporal_generic_worker.triggers.registry import TriggerRegistry
from temporal_generic_worker.triggers.schedule import ScheduleTrigger
from temporal_generic_worker.triggers.webhook import WebhookTrigger, sanitize_headers

__all__ = [
    "ManualTrigger",
    "PollingTrigger",
    "ScheduleTrigger",
    "Trigger",
    "TriggerRegistry",
    "TriggerState",
    "WebhookTrigger",
    "generate_workflow_id",
    "sanitize_headers",
]
