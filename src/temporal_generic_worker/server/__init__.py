"""Shared FastAPI gateway for webhook triggers.

Design intent:
- Keep trigger logic in `temporal_generic_worker.triggers.*`
- Keep HTTP concerns (routing, auth, server lifecycle) here
"""

from __future__ import annotations

__all__ = ["WebhookGateway", "create_app"]

from temporal_generic_worker.server.gateway import WebhookGateway, create_app
