"""Deterministic identity helpers for database build inputs.

These helpers are pure and side-effect free so checksums derived from them are
reproducible across processes, workers and machines.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

_READ_CHUNK_BYTES = 1024 * 1024


def canonical_json(payload: dict[str, Any]) -> str:
    """Serialize payload in a stable canonical form."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def build_input_fingerprint(payload: dict[str, Any]) -> str:
    """Return a stable SHA-256 digest for build inputs.

    The hash stays stable for semantically identical dictionaries, regardless
    of insertion order. List order is significant.
    """
    canonical = canonical_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def sha256_bytes(content: bytes) -> str:
    """Return deterministic SHA-256 digest for raw bytes."""
    return hashlib.sha256(content).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 digest of a file's content, read in chunks."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_READ_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.hexdigest()


def short_token(digest: str, length: int) -> str:
    """Return the filename-safe prefix of a hex digest."""
    if length <= 0 or length > len(digest):
        raise ValueError(f"token length must be between 1 and {len(digest)}")
    return digest[:length]
