"""dbprep package."""

from dbprep.identity import build_input_fingerprint, sha256_bytes, sha256_file

__all__ = [
    "build_input_fingerprint",
    "sha256_bytes",
    "sha256_file",
]
