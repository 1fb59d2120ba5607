"""Utility exports for filesystem and hashing helpers."""

from alpack.utils.fs import (
    atomic_write,
    file_lock,
    remove_tree,
    safe_delete,
    temp_directory,
)
from alpack.utils.hashing import is_sha256_hex, normalize_sha256, sha256_file

__all__ = [
    "atomic_write",
    "file_lock",
    "is_sha256_hex",
    "normalize_sha256",
    "remove_tree",
    "safe_delete",
    "sha256_file",
    "temp_directory",
]
