"""Structured logging configuration.

Uses standard library logging with a JSON formatter. The worker context keys
(`workflow`, `version`, `worker`, `trigger`, `workflow_id`) are lifted to the top
level of each line so runs can be filtered without digging into `extra`.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Everything a bare LogRecord carries, plus what Formatter.format adds to it.
_RESERVED_LOG_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}

CONTEXT_KEYS = ("workflow", "version", "worker", "trigger", "workflow_id")

_NOISY_LOGGERS = ("temporalio", "botocore", "boto3", "urllib3", "uvicorn", "uvicorn.access")


class JsonFormatter(logging.Formatter):
    """JSON lines with worker context at the top level and the rest under `extra`."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_RECORD_ATTRS or key.startswith("_"):
                continue
            if key in CONTEXT_KEYS:
                payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    """Configure root logging with structured JSON output."""

    root = logging.getLogger()

    # Remove any existing handlers to avoid duplicate logs when re-configuring.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # SDK, boto and server internals stay at INFO or above even in debug runs.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
