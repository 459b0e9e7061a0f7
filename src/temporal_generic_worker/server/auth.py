"""Route-level webhook authentication."""

from __future__ import annotations

import base64
import binascii
import secrets
from collections.abc import Mapping

from temporal_generic_worker.models import WebhookAuthConfig


def _header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def _scheme_credentials(value: str, scheme: str) -> str | None:
    prefix, _, credentials = value.partition(" ")
    if prefix.lower() != scheme or not credentials.strip():
        return None
    return credentials.strip()


def _matches(candidate: str | None, expected: str) -> bool:
    if candidate is None:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def is_authorized(auth: WebhookAuthConfig | None, headers: Mapping[str, str]) -> bool:
    """Check request headers against a route's auth config.

    A route without auth config is public.
    """

    if auth is None:
        return True

    if auth.type == "bearer":
        token = _scheme_credentials(_header(headers, "authorization"), "bearer")
        return _matches(token, auth.token)

    if auth.type == "api-key":
        return _matches(_header(headers, auth.api_key_header) or None, auth.token)

    encoded = _scheme_credentials(_header(headers, "authorization"), "basic")
    if encoded is None:
        return False
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return False
    return _matches(decoded, auth.token)
