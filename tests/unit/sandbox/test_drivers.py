"""Unit tests for backend argv construction and binary lookup."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from alpack.domain.models import BackendKind, BindMode, BindMount, BindOrigin
from alpack.errors import BackendSpawnError
from alpack.sandbox.drivers import (
    BwrapDriver,
    ProotDriver,
    driver_class,
    driver_for,
    probe_version,
    resolve_backend_binary,
)

BINDS = (
    BindMount("/dev", "/dev", origin=BindOrigin.DEFAULT, device=True),
    BindMount("/etc/hosts", "/etc/hosts", mode=BindMode.READ_ONLY, origin=BindOrigin.DEFAULT),
    BindMount("/srv/data", "/data"),
)


def _executable(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\necho 'fake 1.2.3'\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def test_proot_argv_shape() -> None:
    argv = ProotDriver("/usr/bin/proot").build_argv(
        root_path="/envs/dev",
        binds=BINDS,
        working_dir="/data",
        as_root=True,
        raw_args=["--kill-on-exit"],
        command=["/bin/sh", "-c", "id"],
    )

    assert argv == [
        "/usr/bin/proot",
        "-r",
        "/envs/dev",
        "-b",
        "/dev:/dev",
        "-b",
        "/etc/hosts:/etc/hosts",
        "-b",
        "/srv/data:/data",
        "-w",
        "/data",
        "-0",
        "--kill-on-exit",
        "/bin/sh",
        "-c",
        "id",
    ]


def test_bwrap_argv_shape() -> None:
    argv = BwrapDriver("/usr/bin/bwrap").build_argv(
        root_path="/envs/dev",
        binds=BINDS,
        working_dir="/",
        as_root=False,
        raw_args=[],
        command=["ls", "-l"],
    )

    assert argv == [
        "/usr/bin/bwrap",
        "--unshare-user",
        "--share-net",
        "--die-with-parent",
        "--bind",
        "/envs/dev",
        "/",
        "--dev-bind",
        "/dev",
        "/dev",
        "--ro-bind",
        "/etc/hosts",
        "/etc/hosts",
        "--bind",
        "/srv/data",
        "/data",
        "--chdir",
        "/",
        "ls",
        "-l",
    ]


def test_bwrap_root_maps_uid_and_gid() -> None:
    argv = BwrapDriver("bwrap").build_argv(
        root_path="/r", binds=(), working_dir="/", as_root=True, raw_args=(), command=("id",)
    )
    assert argv[-6:] == ["/", "--uid", "0", "--gid", "0", "id"]


def test_driver_registry() -> None:
    assert driver_class(BackendKind.PROOT) is ProotDriver
    assert isinstance(driver_for(BackendKind.BWRAP, "/x/bwrap"), BwrapDriver)
    with pytest.raises(BackendSpawnError, match="unsupported sandbox backend"):
        driver_class("docker")  # type: ignore[arg-type]


def test_resolve_prefers_configured_path(tmp_path: Path) -> None:
    configured = _executable(tmp_path / "opt" / "proot")
    on_path = _executable(tmp_path / "bin" / "proot")

    resolved = resolve_backend_binary(
        BackendKind.PROOT, str(configured), environ={"PATH": str(on_path.parent)}
    )

    assert resolved == str(configured)


def test_resolve_rejects_non_executable_configured_path(tmp_path: Path) -> None:
    plain = tmp_path / "proot"
    plain.write_text("", encoding="utf-8")
    with pytest.raises(BackendSpawnError, match="not executable"):
        resolve_backend_binary(BackendKind.PROOT, str(plain), environ={"PATH": ""})


def test_resolve_searches_path_then_local_bin(tmp_path: Path) -> None:
    on_path = _executable(tmp_path / "bin" / "bwrap")
    assert resolve_backend_binary(
        BackendKind.BWRAP, environ={"PATH": str(on_path.parent)}
    ) == str(on_path)

    home = tmp_path / "home"
    local = _executable(home / ".local" / "bin" / "proot")
    assert resolve_backend_binary(
        BackendKind.PROOT, environ={"PATH": str(tmp_path / "empty"), "HOME": str(home)}
    ) == str(local)


def test_resolve_miss_has_install_hint(tmp_path: Path) -> None:
    with pytest.raises(BackendSpawnError, match="bubblewrap") as excinfo:
        resolve_backend_binary(
            BackendKind.BWRAP, environ={"PATH": str(tmp_path), "HOME": str(tmp_path)}
        )
    assert excinfo.value.subject == "bwrap"


def test_probe_version_reads_first_line(tmp_path: Path) -> None:
    fake = _executable(tmp_path / "proot")
    assert probe_version(str(fake)) == "fake 1.2.3"
    assert probe_version(os.fspath(tmp_path / "missing")) is None
