"""Unit tests for rootfs extraction and guest preparation."""

from __future__ import annotations

import dataclasses
import io
import os
import tarfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from alpack.errors import IntegrityError
from alpack.rootfs.materializer import RootfsMaterializer, prepare_guest


def _add_member(tar: tarfile.TarFile, name: str, **attrs: Any) -> None:
    info = tarfile.TarInfo(name)
    for key, value in attrs.items():
        setattr(info, key, value)
    data = attrs.get("size", 0)
    tar.addfile(info, io.BytesIO(b"x" * data) if data else None)


def test_materialize_extracts_and_prepares_guest(
    tmp_path: Path, build_archive: Callable[..., Any]
) -> None:
    archive = build_archive().cached()
    root = tmp_path / "envs" / "dev"
    progress: list[tuple[int, int]] = []

    result = RootfsMaterializer(privileged=False).materialize(
        archive,
        root,
        repositories="https://mirror.test/alpine/edge/main\n",
        progress=lambda done, total: progress.append((done, total)),
    )

    assert result.changed
    assert result.root_path == root
    assert (root / "bin" / "busybox").is_file()
    assert os.readlink(root / "bin" / "sh") == "/bin/busybox"
    assert os.readlink(root / "etc" / "mtab") == "/proc/self/mounts"
    assert (root / "etc" / "apk" / "repositories").read_text(encoding="utf-8") == (
        "https://mirror.test/alpine/edge/main\n"
    )
    for mount_point in ("dev", "proc", "sys", "tmp", "run"):
        assert (root / mount_point).is_dir()
    assert progress[-1] == (result.members, result.members)
    assert not [p for p in root.parent.iterdir() if p.name.startswith(".dev.")]


def test_populated_root_is_left_alone_without_force(
    tmp_path: Path, build_archive: Callable[..., Any]
) -> None:
    archive = build_archive().cached()
    root = tmp_path / "dev"
    root.mkdir()
    (root / "marker").write_text("mine", encoding="utf-8")
    materializer = RootfsMaterializer(privileged=False)

    skipped = materializer.materialize(archive, root)
    assert not skipped.changed
    assert (root / "marker").exists()

    replaced = materializer.materialize(archive, root, force=True)
    assert replaced.changed
    assert not (root / "marker").exists()
    assert (root / "bin" / "busybox").is_file()


def test_checksum_mismatch_removes_archive_and_extracts_nothing(
    tmp_path: Path, build_archive: Callable[..., Any]
) -> None:
    built = build_archive()
    archive = dataclasses.replace(built.cached(), checksum="e" * 64)
    root = tmp_path / "dev"

    with pytest.raises(IntegrityError, match="no longer matches"):
        RootfsMaterializer().materialize(archive, root)

    assert not built.path.exists()
    assert not root.exists()


def test_escaping_member_is_rejected_and_old_tree_survives(
    tmp_path: Path, build_archive: Callable[..., Any]
) -> None:
    good = build_archive().cached()
    evil = build_archive(
        extra=lambda tar: _add_member(tar, "../../escaped", size=3)
    ).cached()
    root = tmp_path / "envs" / "dev"
    materializer = RootfsMaterializer(privileged=False)
    materializer.materialize(good, root)

    with pytest.raises(IntegrityError, match="escapes the rootfs"):
        materializer.materialize(evil, root, force=True)

    assert (root / "bin" / "busybox").is_file()
    assert not (tmp_path / "escaped").exists()
    assert [p.name for p in root.parent.iterdir()] == ["dev"]


def test_escaping_member_leaves_new_target_absent(
    tmp_path: Path, build_archive: Callable[..., Any]
) -> None:
    evil = build_archive(extra=lambda tar: _add_member(tar, "/etc/shadow", size=1)).cached()
    root = tmp_path / "dev"

    with pytest.raises(IntegrityError, match="absolute path"):
        RootfsMaterializer().materialize(evil, root)

    assert not root.exists()


def test_hardlink_outside_root_is_rejected(
    tmp_path: Path, build_archive: Callable[..., Any]
) -> None:
    evil = build_archive(
        extra=lambda tar: _add_member(
            tar, "etc/leak", type=tarfile.LNKTYPE, linkname="../../../etc/passwd"
        )
    ).cached()

    with pytest.raises(IntegrityError, match="hardlink"):
        RootfsMaterializer().materialize(evil, tmp_path / "dev")


def test_device_nodes_are_skipped_when_unprivileged(
    tmp_path: Path, build_archive: Callable[..., Any]
) -> None:
    archive = build_archive(
        extra=lambda tar: _add_member(
            tar, "dev/null", type=tarfile.CHRTYPE, devmajor=1, devminor=3, mode=0o666
        )
    ).cached()
    root = tmp_path / "dev-env"

    result = RootfsMaterializer(privileged=False).materialize(archive, root)

    assert result.skipped_devices == 1
    assert (root / "dev").is_dir()
    assert not (root / "dev" / "null").exists()


def test_cleanup_stale_siblings(tmp_path: Path) -> None:
    root = tmp_path / "dev"
    (tmp_path / ".dev.tmp-abc" / "etc").mkdir(parents=True)
    (tmp_path / ".dev.old-123").mkdir()
    (tmp_path / ".other.tmp-x").mkdir()

    removed = RootfsMaterializer.cleanup_stale_siblings(root)

    assert sorted(p.name for p in removed) == [".dev.old-123", ".dev.tmp-abc"]
    assert (tmp_path / ".other.tmp-x").exists()


def test_prepare_guest_is_idempotent(tmp_path: Path) -> None:
    prepare_guest(tmp_path)
    prepare_guest(tmp_path, repositories="https://m/edge/main\n")

    assert os.readlink(tmp_path / "etc" / "mtab") == "/proc/self/mounts"
    assert (tmp_path / "etc" / "apk" / "repositories").is_file()
    assert RootfsMaterializer.is_populated(tmp_path)
    assert not RootfsMaterializer.is_populated(tmp_path / "missing")


def _owned_member_archive(build_archive: Callable[..., Any]) -> Any:
    return build_archive(
        extra=lambda tar: _add_member(
            tar,
            "etc/owned",
            size=2,
            mode=0o644,
            uid=4242,
            gid=4343,
            uname="daemon",
            gname="daemon",
        )
    ).cached()


def test_privileged_extraction_uses_numeric_ids(
    tmp_path: Path, build_archive: Callable[..., Any], monkeypatch: pytest.MonkeyPatch
) -> None:
    archive = _owned_member_archive(build_archive)
    calls: dict[str, tuple[int, int]] = {}

    def record_chown(path: str, uid: int, gid: int) -> None:
        calls[os.path.basename(path)] = (uid, gid)

    monkeypatch.setattr(os, "geteuid", lambda: 0)
    monkeypatch.setattr(os, "chown", record_chown)
    monkeypatch.setattr(os, "lchown", record_chown)

    RootfsMaterializer(privileged=True).materialize(archive, tmp_path / "dev")

    assert calls["owned"] == (4242, 4343)


@pytest.mark.skipif(os.geteuid() != 0, reason="needs root to change ownership")
def test_privileged_extraction_keeps_archive_ownership(
    tmp_path: Path, build_archive: Callable[..., Any]
) -> None:
    archive = _owned_member_archive(build_archive)
    root = tmp_path / "dev"

    RootfsMaterializer(privileged=True).materialize(archive, root)

    owned = (root / "etc" / "owned").stat()
    assert (owned.st_uid, owned.st_gid) == (4242, 4343)
