"""Client side of remote database builds."""

from __future__ import annotations

import logging
import re
import time
from urllib.parse import urlsplit, urlunsplit

import httpx
from pydantic import ValidationError

from apps.api.app.core.ops import redact_url
from apps.api.app.services.build_spec import BuildSpec
from apps.api.app.services.errors import RemoteBuildError, RemoteBuildUrlInvalidError
from apps.api.app.services.resolved_settings import ResolvedSettings

logger = logging.getLogger("dbprep.remote")

REMOTE_BUILD_PATH = "_dbprep/build"
CONFIG_FIELD = "config"
_REPEATED_SLASHES = re.compile(r"/{2,}")


def build_remote_url(base_url: str) -> str:
    """Return the build endpoint under ``base_url``, dropping any query string."""
    parts = urlsplit(base_url.strip())
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise RemoteBuildUrlInvalidError(base_url)
    path = _REPEATED_SLASHES.sub("/", f"{parts.path}/{REMOTE_BUILD_PATH}")
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def send_build_request(spec: BuildSpec, base_url: str, *, timeout: float) -> ResolvedSettings:
    """POST ``spec`` to the remote peer. Failures are terminal; nothing is retried."""
    url = build_remote_url(base_url)
    started = time.monotonic()
    try:
        response = httpx.post(url, data={CONFIG_FIELD: spec.to_payload()}, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise RemoteBuildError(
            f"The remote build failed with status {exc.response.status_code}",
            url=url,
            response_body=exc.response.text,
        ) from exc
    except httpx.HTTPError as exc:
        raise RemoteBuildError(f"The remote build request failed: {exc}", url=url) from exc

    try:
        resolved = ResolvedSettings.model_validate_json(response.text)
    except ValidationError as exc:
        raise RemoteBuildError(
            "The remote build response could not be read",
            url=url,
            response_body=response.text,
        ) from exc

    logger.info(
        "remote build completed url=%s reused=%s elapsed_ms=%d",
        redact_url(url),
        resolved.database_was_reused,
        int((time.monotonic() - started) * 1000),
    )
    return resolved.model_copy(
        update={
            "built_remotely": True,
            "remote_build_url": base_url,
            "remote_versions": resolved.versions,
        }
    )
