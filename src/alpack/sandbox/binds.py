"""
alpack — bind mount translator

File: src/alpack/sandbox/binds.py

Purpose
- Compute the ordered list of host paths made visible inside a guest: the
  built-in defaults followed by user-supplied ``HOST[:GUEST][:ro|rw]`` specs.

Functional requirements
- Optional defaults whose host path does not exist are skipped; a missing
  required default (``/dev``, ``/proc``) is a ``ValidationError``.
- User specs are parsed strictly: the host path must exist and the guest path
  must be absolute and is normalised.
- At most one mount per guest path; the later entry wins and takes its own
  position in the list.
- Backend-specific argument strings are never parsed here.
"""

from __future__ import annotations

import os
import posixpath
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from alpack.domain.models import BindMode, BindMount, BindOrigin
from alpack.errors import ValidationError

PathExists = Callable[[str], bool]

_MODE_SUFFIXES: Final[dict[str, BindMode]] = {
    "ro": BindMode.READ_ONLY,
    "rw": BindMode.READ_WRITE,
}

ICONS_DIR: Final[str] = "/usr/share/icons"


@dataclass(frozen=True, slots=True)
class DefaultBind:
    """A built-in mount candidate; ``guest_path`` defaults to ``host_path``."""

    host_path: str
    mode: BindMode = BindMode.READ_WRITE
    required: bool = False
    device: bool = False


SYSTEM_BINDS: Final[tuple[DefaultBind, ...]] = (
    DefaultBind("/dev", required=True, device=True),
    DefaultBind("/proc", required=True),
    DefaultBind("/sys", mode=BindMode.READ_ONLY),
    DefaultBind("/tmp"),
    DefaultBind("/run"),
    DefaultBind("/etc/resolv.conf", mode=BindMode.READ_ONLY),
    DefaultBind("/etc/hosts", mode=BindMode.READ_ONLY),
    DefaultBind("/etc/host.conf", mode=BindMode.READ_ONLY),
    DefaultBind("/etc/hosts.equiv", mode=BindMode.READ_ONLY),
    DefaultBind("/etc/netgroup", mode=BindMode.READ_ONLY),
    DefaultBind("/etc/networks", mode=BindMode.READ_ONLY),
    DefaultBind("/etc/nsswitch.conf", mode=BindMode.READ_ONLY),
    DefaultBind("/etc/localtime", mode=BindMode.READ_ONLY),
    DefaultBind("/var/run/dbus/system_bus_socket", mode=BindMode.READ_ONLY),
    DefaultBind("/media"),
    DefaultBind("/mnt"),
)

IDENTITY_BINDS: Final[tuple[DefaultBind, ...]] = (
    DefaultBind("/etc/passwd", mode=BindMode.READ_ONLY),
    DefaultBind("/etc/group", mode=BindMode.READ_ONLY),
)

DESKTOP_BINDS: Final[tuple[DefaultBind, ...]] = (
    DefaultBind("/etc/asound.conf", mode=BindMode.READ_ONLY),
    DefaultBind("/etc/fonts", mode=BindMode.READ_ONLY),
    DefaultBind("/usr/share/font-config", mode=BindMode.READ_ONLY),
    DefaultBind("/usr/share/fontconfig", mode=BindMode.READ_ONLY),
    DefaultBind("/usr/share/fonts", mode=BindMode.READ_ONLY),
    DefaultBind("/usr/share/themes", mode=BindMode.READ_ONLY),
)


def normalize_guest_path(value: str) -> str:
    if not value or not value.startswith("/"):
        raise ValidationError(f"guest path must be absolute: {value!r}", subject=value)
    if "\x00" in value:
        raise ValidationError("guest path must not contain NUL bytes", subject=value)
    normalized = posixpath.normpath(value)
    # normpath keeps a leading "//" as-is
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    if normalized == "/":
        raise ValidationError("cannot bind over the guest root '/'", subject=value)
    return normalized


def parse_bind_spec(
    spec: str,
    *,
    cwd: str | os.PathLike[str] | None = None,
    exists: PathExists = os.path.exists,
) -> BindMount:
    """Parse ``HOST[:GUEST][:ro|rw]`` into a user-supplied ``BindMount``.

    A relative host path is resolved against ``cwd``. When ``GUEST`` is omitted
    the host path is reused inside the guest.
    """

    parts = spec.split(":")
    mode = BindMode.READ_WRITE
    if len(parts) > 1 and parts[-1] in _MODE_SUFFIXES:
        mode = _MODE_SUFFIXES[parts.pop()]
    if len(parts) > 2:
        raise ValidationError(
            f"invalid bind {spec!r}: expected HOST[:GUEST][:ro|rw]", subject=spec
        )

    raw_host = parts[0]
    if not raw_host:
        raise ValidationError(f"invalid bind {spec!r}: host path is empty", subject=spec)
    base = os.fspath(cwd) if cwd is not None else os.getcwd()
    host_path = os.path.normpath(os.path.join(base, os.path.expanduser(raw_host)))
    if not exists(host_path):
        raise ValidationError(
            f"bind source does not exist on the host: {host_path}", subject=host_path
        )

    guest_path = normalize_guest_path(parts[1] if len(parts) == 2 else host_path)
    return BindMount(
        host_path=host_path, guest_path=guest_path, mode=mode, origin=BindOrigin.USER
    )


def cursor_theme_dirs(icons_dir: str = ICONS_DIR) -> list[str]:
    """Per-theme ``cursors`` directories under the host icon tree."""

    root = Path(icons_dir)
    if not root.is_dir():
        return []
    return sorted(
        str(theme / "cursors") for theme in root.iterdir() if (theme / "cursors").is_dir()
    )


def default_candidates(
    *,
    home: str | None,
    bind_groups: bool = True,
    extra_binds: bool = True,
    icons_dir: str = ICONS_DIR,
) -> list[DefaultBind]:
    candidates = list(SYSTEM_BINDS)
    if home and os.path.isabs(home) and os.path.normpath(home) != "/":
        candidates.append(DefaultBind(os.path.normpath(home)))
    if bind_groups:
        candidates.extend(IDENTITY_BINDS)
    if extra_binds:
        candidates.extend(DESKTOP_BINDS)
        candidates.extend(
            DefaultBind(path, mode=BindMode.READ_ONLY) for path in cursor_theme_dirs(icons_dir)
        )
    return candidates


def default_binds(
    *,
    home: str | None,
    bind_groups: bool = True,
    extra_binds: bool = True,
    suppress: Iterable[str] = (),
    exists: PathExists = os.path.exists,
    icons_dir: str = ICONS_DIR,
) -> list[BindMount]:
    candidates = default_candidates(
        home=home, bind_groups=bind_groups, extra_binds=extra_binds, icons_dir=icons_dir
    )
    known = {normalize_guest_path(item.host_path) for item in candidates}
    suppressed: set[str] = set()
    for raw in suppress:
        guest = normalize_guest_path(raw)
        if guest not in known:
            raise ValidationError(f"{guest} is not a default bind", subject=guest)
        suppressed.add(guest)

    binds: list[BindMount] = []
    for item in candidates:
        guest = normalize_guest_path(item.host_path)
        if guest in suppressed:
            continue
        if not exists(item.host_path):
            if item.required:
                raise ValidationError(
                    f"required host path {item.host_path} is missing", subject=item.host_path
                )
            continue
        binds.append(
            BindMount(
                host_path=item.host_path,
                guest_path=guest,
                mode=item.mode,
                origin=BindOrigin.DEFAULT,
                device=item.device,
            )
        )
    return binds


def deduplicate(binds: Iterable[BindMount]) -> list[BindMount]:
    """Keep one mount per guest path: the last one given."""

    winners: dict[str, BindMount] = {}
    for bind in binds:
        winners.pop(bind.guest_path, None)
        winners[bind.guest_path] = bind
    return list(winners.values())


def translate(
    user_binds: Iterable[str],
    *,
    home: str | None,
    bind_groups: bool = True,
    extra_binds: bool = True,
    suppress: Iterable[str] = (),
    cwd: str | os.PathLike[str] | None = None,
    exists: PathExists = os.path.exists,
    icons_dir: str = ICONS_DIR,
) -> list[BindMount]:
    """Defaults first, then user binds in input order, deduplicated by guest path."""

    mounts = default_binds(
        home=home,
        bind_groups=bind_groups,
        extra_binds=extra_binds,
        suppress=suppress,
        exists=exists,
        icons_dir=icons_dir,
    )
    mounts.extend(parse_bind_spec(spec, cwd=cwd, exists=exists) for spec in user_binds)
    return deduplicate(mounts)


__all__ = [
    "DESKTOP_BINDS",
    "IDENTITY_BINDS",
    "SYSTEM_BINDS",
    "DefaultBind",
    "cursor_theme_dirs",
    "deduplicate",
    "default_binds",
    "default_candidates",
    "normalize_guest_path",
    "parse_bind_spec",
    "translate",
]
