"""Stable constants shared by the fetcher, registry and sandbox layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted records.
CONFIG_SCHEMA_VERSION: Final[int] = 1
REGISTRY_SCHEMA_VERSION: Final[int] = 1
CACHE_RECORD_SCHEMA_VERSION: Final[int] = 1

# Default host locations.
DEFAULT_CONFIG_PATH: Final[str] = "~/.config/alpack/config.toml"
DEFAULT_BASE_DIR: Final[str] = "~/.alpack"
DEFAULT_CACHE_DIR: Final[str] = "~/.cache/alpack"
DEFAULT_LOG_DIR: Final[str] = "~/.cache/alpack/logs"

# Mirror layout.
DEFAULT_MIRROR_URL: Final[str] = "https://dl-cdn.alpinelinux.org/alpine/"
RELEASES_INDEX_NAME: Final[str] = "latest-releases.yaml"
MINIROOTFS_FLAVOR: Final[str] = "alpine-minirootfs"

# Registry layout under the base directory.
REGISTRY_DIR_NAME: Final[str] = ".registry"
LOCKS_DIR_NAME: Final[str] = ".locks"

# Guest layout.
GUEST_SHELL: Final[str] = "/bin/sh"
GUEST_PATH: Final[str] = "/bin:/sbin:/usr/bin:/usr/sbin:/usr/libexec"
GUEST_REPOSITORIES_FILE: Final[PurePosixPath] = PurePosixPath("etc/apk/repositories")
GUEST_MTAB: Final[PurePosixPath] = PurePosixPath("etc/mtab")
GUEST_MOUNT_POINTS: Final[tuple[str, ...]] = ("dev", "proc", "sys", "tmp", "run", "media", "mnt")

# Alpine architecture names published per channel.
STABLE_ARCHITECTURES: Final[tuple[str, ...]] = (
    "aarch64",
    "armhf",
    "armv7",
    "ppc64le",
    "riscv64",
    "s390x",
    "x86",
    "x86_64",
)
EDGE_ARCHITECTURES: Final[tuple[str, ...]] = (*STABLE_ARCHITECTURES, "loongarch64")

# ``platform.machine()`` spellings that differ from Alpine's.
HOST_MACHINE_ALIASES: Final[dict[str, str]] = {
    "amd64": "x86_64",
    "arm64": "aarch64",
    "armv7l": "armv7",
    "armv6l": "armhf",
    "i386": "x86",
    "i486": "x86",
    "i586": "x86",
    "i686": "x86",
    "ppc64el": "ppc64le",
}

__all__ = [
    "CACHE_RECORD_SCHEMA_VERSION",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BASE_DIR",
    "DEFAULT_CACHE_DIR",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_LOG_DIR",
    "DEFAULT_MIRROR_URL",
    "EDGE_ARCHITECTURES",
    "GUEST_MOUNT_POINTS",
    "GUEST_MTAB",
    "GUEST_PATH",
    "GUEST_REPOSITORIES_FILE",
    "GUEST_SHELL",
    "HOST_MACHINE_ALIASES",
    "LOCKS_DIR_NAME",
    "MINIROOTFS_FLAVOR",
    "REGISTRY_DIR_NAME",
    "REGISTRY_SCHEMA_VERSION",
    "RELEASES_INDEX_NAME",
    "STABLE_ARCHITECTURES",
]
