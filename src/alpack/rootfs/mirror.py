"""
alpack — Alpine mirror layout

File: src/alpack/rootfs/mirror.py

Purpose
- Map a channel and architecture onto mirror URLs, parse the mirror's
  ``latest-releases.yaml`` index, and render the guest's apk repository list.

Functional requirements
- The host architecture is taken from ``ALPACK_ARCH``, then ``ARCH``, then the
  running machine, translated to Alpine's naming.
- Only architectures the channel publishes are accepted.
"""

from __future__ import annotations

import os
import platform
from collections.abc import Mapping
from dataclasses import dataclass

import yaml

from alpack.constants import (
    DEFAULT_MIRROR_URL,
    HOST_MACHINE_ALIASES,
    MINIROOTFS_FLAVOR,
    RELEASES_INDEX_NAME,
)
from alpack.domain.models import Channel
from alpack.errors import IntegrityError, ValidationError
from alpack.utils.hashing import normalize_sha256


@dataclass(frozen=True, slots=True)
class ReleaseEntry:
    """One row of ``latest-releases.yaml`` for the minirootfs flavor."""

    version: str
    file: str
    sha256: str
    size: int | None = None


def host_architecture(environ: Mapping[str, str] | None = None) -> str:
    env_map = os.environ if environ is None else environ
    for name in ("ALPACK_ARCH", "ARCH"):
        value = env_map.get(name, "").strip()
        if value:
            return HOST_MACHINE_ALIASES.get(value, value)
    machine = platform.machine().strip().lower()
    return HOST_MACHINE_ALIASES.get(machine, machine)


def check_architecture(channel: Channel, architecture: str) -> str:
    """Return ``architecture`` if ``channel`` publishes it, else raise ``ValidationError``."""

    if architecture not in channel.architectures:
        allowed = ", ".join(channel.architectures)
        raise ValidationError(
            f"architecture {architecture!r} is not available on {channel.value} "
            f"(expected one of: {allowed})",
            subject=architecture,
        )
    return architecture


def release_url(channel: Channel, architecture: str, mirror: str = DEFAULT_MIRROR_URL) -> str:
    base = mirror if mirror.endswith("/") else mirror + "/"
    return f"{base}{channel.release_dir}/releases/{architecture}/"


def releases_index_url(
    channel: Channel, architecture: str, mirror: str = DEFAULT_MIRROR_URL
) -> str:
    return release_url(channel, architecture, mirror) + RELEASES_INDEX_NAME


def repositories_text(channel: Channel, mirror: str = DEFAULT_MIRROR_URL) -> str:
    """Contents of the guest's ``/etc/apk/repositories``."""

    base = mirror if mirror.endswith("/") else mirror + "/"
    root = f"{base}{channel.release_dir}"
    lines = [f"{root}/main", f"{root}/community"]
    if channel is Channel.EDGE:
        lines.append(f"{root}/testing")
    return "\n".join(lines) + "\n"


def parse_releases_index(text: str, *, source: str = RELEASES_INDEX_NAME) -> ReleaseEntry:
    """Pick the minirootfs row out of a ``latest-releases.yaml`` document."""

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise IntegrityError(f"malformed release index {source}: {exc}", subject=source) from exc

    if not isinstance(document, list):
        raise IntegrityError(f"release index {source} is not a list", subject=source)

    for row in document:
        if not isinstance(row, Mapping) or row.get("flavor") != MINIROOTFS_FLAVOR:
            continue
        version = row.get("version")
        file_name = row.get("file")
        digest = row.get("sha256")
        # Edge snapshots are plain dates, which YAML loads as integers.
        if isinstance(version, (int, float)) and not isinstance(version, bool):
            version = str(version)
        if not isinstance(version, str) or not isinstance(file_name, str):
            raise IntegrityError(f"minirootfs entry in {source} is incomplete", subject=source)
        if "/" in file_name or file_name in {"", ".", ".."}:
            raise IntegrityError(f"unsafe archive name {file_name!r} in {source}", subject=source)
        try:
            checksum = normalize_sha256(str(digest))
        except ValueError as exc:
            raise IntegrityError(
                f"minirootfs entry in {source} has no valid sha256", subject=source
            ) from exc
        size = row.get("size")
        return ReleaseEntry(
            version=version,
            file=file_name,
            sha256=checksum,
            size=size if isinstance(size, int) and not isinstance(size, bool) else None,
        )

    raise IntegrityError(f"no {MINIROOTFS_FLAVOR} entry in {source}", subject=source)


__all__ = [
    "ReleaseEntry",
    "check_architecture",
    "host_architecture",
    "parse_releases_index",
    "release_url",
    "releases_index_url",
    "repositories_text",
]
