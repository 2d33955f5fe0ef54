"""Operational safety helpers for config validation and log redaction."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlparse

from apps.api.app.core.config import Settings

_REDACTED = "***REDACTED***"
_SENSITIVE_KEYS = {"password", "secret", "token", "authorization", "api_key"}
_URL_PASSWORD = re.compile(r"(?P<prefix>[a-z][a-z0-9+.\-]*://[^:/@\s]+:)(?P<password>[^@\s]+)@")
_VALID_INVALIDATION_METHODS = {"content", "modified"}


def _is_sensitive_key(key: str) -> bool:
    normalized = key.lower().replace("-", "_")
    return (
        normalized in _SENSITIVE_KEYS
        or normalized.endswith("_key")
        or normalized.endswith("_password")
    )


def redact_url(url: str) -> str:
    """Mask the password portion of a database or http URL."""
    return _URL_PASSWORD.sub(lambda match: f"{match.group('prefix')}{_REDACTED}@", url)


def redact_sensitive_fields(value: Any) -> Any:
    if isinstance(value, dict):
        redacted: dict[str, Any] = {}
        for key, nested in value.items():
            if _is_sensitive_key(str(key)):
                redacted[key] = _REDACTED
            else:
                redacted[key] = redact_sensitive_fields(nested)
        return redacted
    if isinstance(value, list):
        return [redact_sensitive_fields(item) for item in value]
    if isinstance(value, str):
        return redact_url(value)
    return value


def validate_runtime_configuration(settings: Settings) -> None:
    if settings.stale_grace_seconds < 0:
        raise ValueError("Invalid runtime configuration: stale grace seconds must be >= 0")
    if settings.remote_build_timeout_seconds <= 0:
        raise ValueError("Invalid runtime configuration: remote build timeout must be > 0")
    if settings.cache_invalidation_method not in _VALID_INVALIDATION_METHODS:
        raise ValueError(
            "Invalid runtime configuration: cache invalidation method must be one of "
            + ",".join(sorted(_VALID_INVALIDATION_METHODS))
        )
    if not settings.snapshot_prefix:
        raise ValueError("Invalid runtime configuration: snapshot prefix must not be empty")
    if settings.default_connection not in settings.connections:
        raise ValueError(
            "Invalid runtime configuration: default connection "
            f"{settings.default_connection!r} is not configured"
        )
    if settings.remote_build_url:
        parsed = urlparse(settings.remote_build_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("Invalid runtime configuration: remote build url must be http(s)")
