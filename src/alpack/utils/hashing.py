"""
alpack — hashing utilities

File: src/alpack/utils/hashing.py

Purpose
- SHA-256 helpers for cached archives, both for files at rest and for data
  hashed incrementally while it streams from the mirror.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import hashlib
import os
import string
from pathlib import Path

PathLike = str | os.PathLike[str]

_SHA256_HEX_LENGTH = 64
_FILE_READ_CHUNK_BYTES = 1024 * 1024
_HEX_DIGITS = set(string.hexdigits)

__all__ = [
    "is_sha256_hex",
    "normalize_sha256",
    "sha256_file",
]


def sha256_file(path: PathLike, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def is_sha256_hex(value: object) -> bool:
    return (
        isinstance(value, str)
        and len(value) == _SHA256_HEX_LENGTH
        and set(value).issubset(_HEX_DIGITS)
    )


def normalize_sha256(value: str) -> str:
    """Return ``value`` as a lowercase digest, accepting an optional ``sha256:`` prefix."""

    candidate = value.strip()
    if candidate.lower().startswith("sha256:"):
        candidate = candidate[len("sha256:") :]
    if not is_sha256_hex(candidate):
        raise ValueError(f"invalid SHA-256 hex digest: {value!r}")
    return candidate.lower()
