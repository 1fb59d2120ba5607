"""Shared fixtures: synthetic minirootfs archives and mirror documents."""

from __future__ import annotations

import io
import tarfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import pytest

from alpack.domain.models import CachedArchive, Channel
from alpack.utils.hashing import sha256_file

OS_RELEASE = (
    'NAME="Alpine Linux"\n'
    "ID=alpine\n"
    "VERSION_ID=3.21.0_alpha20250108\n"
    'PRETTY_NAME="Alpine Linux edge"\n'
)


@dataclass(frozen=True, slots=True)
class BuiltArchive:
    path: Path
    sha256: str

    def cached(
        self, *, channel: Channel = Channel.EDGE, architecture: str = "x86_64"
    ) -> CachedArchive:
        return CachedArchive(
            channel=channel,
            architecture=architecture,
            source_url=f"https://mirror.test/{self.path.name}",
            local_path=str(self.path.resolve()),
            checksum=self.sha256,
            version="20250108",
            fetched_at=datetime(2025, 1, 8, tzinfo=UTC),
        )


ArchiveBuilder = Callable[..., BuiltArchive]


def _add_file(tar: tarfile.TarFile, name: str, data: bytes, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = mode
    tar.addfile(info, io.BytesIO(data))


def _add_dir(tar: tarfile.TarFile, name: str) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    tar.addfile(info)


def _add_symlink(tar: tarfile.TarFile, name: str, target: str) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    tar.addfile(info)


def write_minirootfs(
    path: Path,
    *,
    extra: Callable[[tarfile.TarFile], None] | None = None,
    os_release: str = OS_RELEASE,
) -> BuiltArchive:
    """Write a tiny Alpine-shaped rootfs tarball to ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, mode="w:gz") as tar:
        for directory in ("bin", "etc", "etc/apk", "lib", "usr", "usr/bin", "var"):
            _add_dir(tar, directory)
        _add_file(tar, "bin/busybox", b"\x7fELF-not-really", mode=0o4755)
        _add_symlink(tar, "bin/sh", "/bin/busybox")
        _add_file(tar, "etc/os-release", os_release.encode("utf-8"))
        _add_file(tar, "etc/apk/repositories", b"https://old.mirror/v3.0/main\n")
        _add_file(tar, "etc/mtab", b"stale\n")
        if extra is not None:
            extra(tar)
    return BuiltArchive(path=path, sha256=sha256_file(path))


@pytest.fixture
def build_archive(tmp_path: Path) -> ArchiveBuilder:
    counter = iter(range(1_000))

    def build(
        *,
        extra: Callable[[tarfile.TarFile], None] | None = None,
        os_release: str = OS_RELEASE,
        name: str | None = None,
    ) -> BuiltArchive:
        file_name = name or f"alpine-minirootfs-{next(counter)}-x86_64.tar.gz"
        return write_minirootfs(
            tmp_path / "archives" / file_name, extra=extra, os_release=os_release
        )

    return build


def releases_yaml(*, version: str, file: str, sha256: str, size: int | None = None) -> str:
    size_line = f"  size: {size}\n" if size is not None else ""
    return (
        "---\n"
        "-\n"
        "  title: \"Netboot\"\n"
        "  flavor: alpine-netboot\n"
        f"  file: alpine-netboot-{version}-x86_64.tar.gz\n"
        "  sha256: " + "0" * 64 + "\n"
        f"  version: {version}\n"
        "-\n"
        "  title: \"Mini root filesystem\"\n"
        "  flavor: alpine-minirootfs\n"
        f"  file: {file}\n"
        f"  sha256: {sha256}\n"
        f"{size_line}"
        f"  version: {version}\n"
    )


@pytest.fixture
def releases_document() -> Callable[..., str]:
    return releases_yaml


@pytest.fixture
def home_dir(tmp_path: Path) -> Path:
    home = tmp_path / "home" / "tester"
    home.mkdir(parents=True)
    return home
