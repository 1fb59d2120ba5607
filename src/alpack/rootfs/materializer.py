"""
alpack — rootfs materializer

File: src/alpack/rootfs/materializer.py

Purpose
- Turn a verified minirootfs archive into a usable guest root directory.

Functional requirements
- The archive digest is re-checked before extraction; a mismatch deletes the
  archive and extracts nothing.
- Extraction happens in a sibling ``.<name>.tmp-*`` directory that is renamed
  into place only when complete, so the target is either absent, the old tree,
  or the complete new tree.
- A populated target is left alone unless ``force`` is set; forced runs replace
  the tree wholesale and never merge into it.
- Members whose path, or hardlink target, resolves outside the staging
  directory are rejected. Absolute symlinks are kept as-is since the guest
  resolves them against its own root.
- Device nodes are skipped when not running as root. As root, ownership is
  restored from the numeric uid/gid stored in the archive, not the names.
"""

from __future__ import annotations

import os
import tarfile
import tempfile
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from alpack.constants import GUEST_MOUNT_POINTS, GUEST_MTAB, GUEST_REPOSITORIES_FILE
from alpack.domain.models import CachedArchive
from alpack.errors import IntegrityError
from alpack.observability.logging import get_logger
from alpack.utils.fs import fsync_directory, remove_tree
from alpack.utils.hashing import sha256_file

ExtractProgress = Callable[[int, int], None]

_TMP_MARKER: Final[str] = ".tmp-"
_OLD_MARKER: Final[str] = ".old-"

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class MaterializeResult:
    root_path: Path
    changed: bool
    members: int = 0
    skipped_devices: int = 0


class RootfsMaterializer:
    """Extract archives into environment roots with all-or-nothing replacement."""

    def __init__(self, *, privileged: bool | None = None) -> None:
        self._privileged = os.geteuid() == 0 if privileged is None else privileged

    def materialize(
        self,
        archive: CachedArchive,
        root_path: str | os.PathLike[str],
        *,
        force: bool = False,
        repositories: str | None = None,
        progress: ExtractProgress | None = None,
    ) -> MaterializeResult:
        root = Path(root_path)
        archive_path = Path(archive.local_path)

        if not archive_path.is_file():
            raise IntegrityError(f"archive is missing: {archive_path}", subject=str(archive_path))
        actual = sha256_file(archive_path)
        if actual != archive.checksum:
            archive_path.unlink(missing_ok=True)
            raise IntegrityError(
                f"archive {archive_path.name} no longer matches its recorded checksum "
                f"(expected {archive.checksum}, got {actual}); it has been removed",
                subject=str(archive_path),
            )

        if not force and self.is_populated(root):
            logger.info("rootfs already populated", extra={"path": root})
            return MaterializeResult(root_path=root, changed=False)

        root.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{root.name}{_TMP_MARKER}", dir=root.parent))
        try:
            members, skipped = self._extract(archive_path, staging, progress)
            os.chmod(staging, 0o755)
            prepare_guest(staging, repositories=repositories)
            self._swap_into_place(staging, root)
        except BaseException:
            if staging.exists():
                remove_tree(staging)
            raise

        logger.info(
            "rootfs materialized",
            extra={"path": root, "members": members, "skipped_devices": skipped},
        )
        return MaterializeResult(
            root_path=root, changed=True, members=members, skipped_devices=skipped
        )

    @staticmethod
    def is_populated(root_path: str | os.PathLike[str]) -> bool:
        root = Path(root_path)
        if not root.is_dir():
            return False
        return any(root.iterdir())

    @staticmethod
    def cleanup_stale_siblings(root_path: str | os.PathLike[str]) -> list[Path]:
        """Remove staging and retired trees left behind by an interrupted run."""

        root = Path(root_path)
        if not root.parent.is_dir():
            return []
        removed: list[Path] = []
        for marker in (_TMP_MARKER, _OLD_MARKER):
            for candidate in sorted(root.parent.glob(f".{root.name}{marker}*")):
                if candidate.is_dir() and not candidate.is_symlink():
                    remove_tree(candidate)
                else:
                    candidate.unlink(missing_ok=True)
                removed.append(candidate)
        if removed:
            logger.info("removed stale rootfs siblings", extra={"paths": removed})
        return removed

    def _extract(
        self,
        archive_path: Path,
        staging: Path,
        progress: ExtractProgress | None,
    ) -> tuple[int, int]:
        staging_real = os.path.realpath(staging)
        skipped = 0

        def member_filter(member: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo | None:
            nonlocal skipped
            _check_member_path(member, staging_real)
            if (member.ischr() or member.isblk()) and not self._privileged:
                skipped += 1
                return None
            return member

        try:
            with tarfile.open(archive_path, mode="r:*") as tar:
                members = tar.getmembers()
                tar.extractall(
                    staging,
                    members=_with_progress(members, progress),
                    numeric_owner=True,
                    filter=member_filter,
                )
        except tarfile.TarError as exc:
            raise IntegrityError(
                f"cannot extract {archive_path.name}: {exc}", subject=str(archive_path)
            ) from exc
        return len(members), skipped

    @staticmethod
    def _swap_into_place(staging: Path, root: Path) -> None:
        if not root.exists() and not root.is_symlink():
            os.rename(staging, root)
            fsync_directory(root.parent)
            return

        retired = root.parent / f".{root.name}{_OLD_MARKER}{uuid.uuid4().hex[:12]}"
        os.rename(root, retired)
        try:
            os.rename(staging, root)
        except OSError:
            os.rename(retired, root)
            raise
        fsync_directory(root.parent)
        remove_tree(retired)


def prepare_guest(root: Path, *, repositories: str | None = None) -> None:
    """Lay down the files every guest needs before the first run."""

    for name in GUEST_MOUNT_POINTS:
        (root / name).mkdir(mode=0o755, exist_ok=True)

    if repositories is not None:
        repo_file = root.joinpath(*GUEST_REPOSITORIES_FILE.parts)
        repo_file.parent.mkdir(parents=True, exist_ok=True)
        repo_file.write_text(repositories, encoding="utf-8")

    mtab = root.joinpath(*GUEST_MTAB.parts)
    if mtab.is_symlink() and os.readlink(mtab) == "/proc/self/mounts":
        return
    if mtab.is_symlink() or mtab.exists():
        mtab.unlink()
    mtab.parent.mkdir(parents=True, exist_ok=True)
    mtab.symlink_to("/proc/self/mounts")


def _check_member_path(member: tarfile.TarInfo, staging_real: str) -> None:
    name = member.name
    if name.startswith("/") or "\x00" in name:
        raise IntegrityError(f"archive member has an absolute path: {name!r}", subject=name)

    parent_real = os.path.realpath(os.path.join(staging_real, os.path.dirname(name)))
    target = os.path.join(parent_real, os.path.basename(name))
    if not _inside(target, staging_real):
        raise IntegrityError(f"archive member escapes the rootfs: {name!r}", subject=name)

    if member.islnk():
        link_target = os.path.realpath(os.path.join(staging_real, member.linkname))
        if member.linkname.startswith("/") or not _inside(link_target, staging_real):
            raise IntegrityError(
                f"hardlink {name!r} points outside the rootfs: {member.linkname!r}", subject=name
            )


def _inside(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def _with_progress(
    members: list[tarfile.TarInfo], progress: ExtractProgress | None
) -> Iterator[tarfile.TarInfo]:
    total = len(members)
    for index, member in enumerate(members, start=1):
        yield member
        if progress is not None:
            progress(index, total)


__all__ = ["ExtractProgress", "MaterializeResult", "RootfsMaterializer", "prepare_guest"]
