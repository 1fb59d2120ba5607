"""
alpack — filesystem utilities

File: src/alpack/utils/fs.py

Purpose
- Atomic file writes, guarded deletion, advisory locking and temporary
  directories shared by the cache, registry and materializer.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Deletion refuses paths outside the owning base directory.
- Locks are exclusive ``flock`` locks on a dedicated lock file; they are released
  when the holder exits, even on a crash.

Non-functional requirements
- Standard library only; POSIX hosts.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "file_lock",
    "fsync_directory",
    "remove_tree",
    "safe_delete",
    "temp_directory",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.

    The parent directory must already exist; ``FileNotFoundError`` otherwise.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def safe_delete(path: PathLike, base_dir: PathLike) -> None:
    """
    Delete ``path`` only if it is contained within ``base_dir``.

    Symlinks are unlinked without traversing into their targets. Missing paths
    are ignored so removal can be re-run after an interrupted attempt.
    """

    base = Path(base_dir).resolve(strict=True)
    if not base.is_dir():
        raise NotADirectoryError(f"{base!s} is not a directory")

    target = Path(path)
    if not target.exists() and not target.is_symlink():
        return

    candidate = target.parent.resolve(strict=True) / target.name
    if candidate == base or not _is_relative_to(candidate, base):
        raise ValueError(f"refusing to delete path outside base directory: {target!s}")

    if target.is_symlink():
        target.unlink()
        return

    if target.is_dir():
        remove_tree(target)
        return

    target.unlink()


@contextmanager
def file_lock(path: PathLike) -> Iterator[Path]:
    """Hold an exclusive advisory lock on ``path`` for the duration of the block."""

    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            yield lock_path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


@contextmanager
def temp_directory(prefix: str = "alpack-", *, parent: PathLike | None = None) -> Iterator[Path]:
    """Yield a temporary directory path and clean it up on exit."""

    with tempfile.TemporaryDirectory(
        prefix=prefix, dir=None if parent is None else str(parent)
    ) as tmp:
        yield Path(tmp)


def remove_tree(path: PathLike) -> None:
    """Recursively delete a directory tree, including read-only subdirectories."""

    shutil.rmtree(path, onexc=_make_writable_and_retry)


def fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some filesystems do not support fsync on directories.
    """

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _make_writable_and_retry(func: object, path: str, _exc: BaseException) -> None:
    # Extracted rootfs trees can ship directories without the owner write bit.
    parent = os.path.dirname(path)
    os.chmod(parent, 0o755)
    if callable(func):
        func(path)
