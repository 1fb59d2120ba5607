"""
alpack — sandbox process drivers

File: src/alpack/sandbox/drivers.py

Purpose
- Translate a guest root, a bind list and a command into the argv of one
  rootless isolation backend (PRoot or Bubblewrap).

Functional requirements
- Each backend is a ``ProcessDriver`` subclass registered by ``BackendKind``;
  adding a backend touches neither the registry nor the bind translator.
- Opaque backend arguments are inserted verbatim just before the guest command.
- Backend binaries are located via the configured path, then ``PATH``, then
  ``~/.local/bin``; a miss raises ``BackendSpawnError``.

Non-functional requirements
- Drivers are pure argv builders; they never spawn anything.
"""

from __future__ import annotations

import abc
import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from typing import ClassVar, Final

from alpack.domain.models import BackendKind, BindMount
from alpack.errors import BackendSpawnError

_INSTALL_HINTS: Final[dict[BackendKind, str]] = {
    BackendKind.PROOT: "install the 'proot' package or set sandbox.proot_path",
    BackendKind.BWRAP: "install the 'bubblewrap' package or set sandbox.bwrap_path",
}

_VERSION_TIMEOUT_SECONDS: Final[float] = 5.0


class ProcessDriver(abc.ABC):
    """Argv builder for one isolation backend."""

    kind: ClassVar[BackendKind]
    binary_name: ClassVar[str]

    def __init__(self, executable: str) -> None:
        self.executable = executable

    @abc.abstractmethod
    def build_argv(
        self,
        *,
        root_path: str,
        binds: Sequence[BindMount],
        working_dir: str,
        as_root: bool,
        raw_args: Sequence[str],
        command: Sequence[str],
    ) -> list[str]:
        """Return the full argv, executable first."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.executable!r})"


class ProotDriver(ProcessDriver):
    """PRoot: ptrace-based chroot emulation.

    PRoot has no read-only bind; read-only mounts are bound read-write.
    """

    kind = BackendKind.PROOT
    binary_name = "proot"

    def build_argv(
        self,
        *,
        root_path: str,
        binds: Sequence[BindMount],
        working_dir: str,
        as_root: bool,
        raw_args: Sequence[str],
        command: Sequence[str],
    ) -> list[str]:
        argv = [self.executable, "-r", root_path]
        for bind in binds:
            argv.extend(["-b", f"{bind.host_path}:{bind.guest_path}"])
        argv.extend(["-w", working_dir])
        if as_root:
            argv.append("-0")
        argv.extend(raw_args)
        argv.extend(command)
        return argv


class BwrapDriver(ProcessDriver):
    """Bubblewrap: user-namespace sandbox with real bind mounts."""

    kind = BackendKind.BWRAP
    binary_name = "bwrap"

    def build_argv(
        self,
        *,
        root_path: str,
        binds: Sequence[BindMount],
        working_dir: str,
        as_root: bool,
        raw_args: Sequence[str],
        command: Sequence[str],
    ) -> list[str]:
        argv = [
            self.executable,
            "--unshare-user",
            "--share-net",
            "--die-with-parent",
            "--bind",
            root_path,
            "/",
        ]
        for bind in binds:
            if bind.device:
                flag = "--dev-bind"
            elif bind.read_only:
                flag = "--ro-bind"
            else:
                flag = "--bind"
            argv.extend([flag, bind.host_path, bind.guest_path])
        argv.extend(["--chdir", working_dir])
        if as_root:
            argv.extend(["--uid", "0", "--gid", "0"])
        argv.extend(raw_args)
        argv.extend(command)
        return argv


_DRIVERS: dict[BackendKind, type[ProcessDriver]] = {
    BackendKind.PROOT: ProotDriver,
    BackendKind.BWRAP: BwrapDriver,
}


def register_driver(driver_cls: type[ProcessDriver]) -> type[ProcessDriver]:
    _DRIVERS[driver_cls.kind] = driver_cls
    return driver_cls


def driver_class(kind: BackendKind) -> type[ProcessDriver]:
    try:
        return _DRIVERS[BackendKind(kind)]
    except (KeyError, ValueError) as exc:
        raise BackendSpawnError(f"unsupported sandbox backend: {kind}", subject=str(kind)) from exc


def driver_for(kind: BackendKind, executable: str) -> ProcessDriver:
    return driver_class(kind)(executable)


def resolve_backend_binary(
    kind: BackendKind,
    configured: str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Locate the backend executable or raise ``BackendSpawnError``."""

    env = os.environ if environ is None else environ
    name = driver_class(kind).binary_name

    if configured:
        candidate = os.path.expanduser(configured)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
        raise BackendSpawnError(
            f"configured {kind.value} binary is not executable: {candidate}", subject=candidate
        )

    found = shutil.which(name, path=env.get("PATH", os.defpath))
    if found is not None:
        return found

    home = env.get("HOME")
    if home:
        local = os.path.join(home, ".local", "bin", name)
        if os.path.isfile(local) and os.access(local, os.X_OK):
            return local

    raise BackendSpawnError(
        f"{name} not found on PATH or in ~/.local/bin; {_INSTALL_HINTS[kind]}", subject=name
    )


def probe_version(executable: str) -> str | None:
    """First line of ``<executable> --version``, or None if it cannot be run."""

    try:
        completed = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            text=True,
            timeout=_VERSION_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    for line in (completed.stdout + completed.stderr).splitlines():
        if line.strip():
            return line.strip()
    return None


__all__ = [
    "BwrapDriver",
    "ProcessDriver",
    "ProotDriver",
    "driver_class",
    "driver_for",
    "probe_version",
    "register_driver",
    "resolve_backend_binary",
]
