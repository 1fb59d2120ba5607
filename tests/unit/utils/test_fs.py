"""Unit tests for filesystem helpers."""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from alpack.utils.fs import (
    atomic_write,
    file_lock,
    remove_tree,
    safe_delete,
    temp_directory,
)


def test_atomic_write_replaces_content_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "record.json"
    target.parent.mkdir()
    atomic_write(target, "first\n")
    atomic_write(target, b"second\n")

    assert target.read_text(encoding="utf-8") == "second\n"
    assert sorted(item.name for item in target.parent.iterdir()) == ["record.json"]


def test_atomic_write_requires_existing_parent(tmp_path: Path) -> None:
    target = tmp_path / "missing" / "record.json"

    with pytest.raises(FileNotFoundError):
        atomic_write(target, "data")

    assert not (tmp_path / "missing").exists()


def test_safe_delete_removes_tree_inside_base(tmp_path: Path) -> None:
    victim = tmp_path / "env"
    (victim / "etc").mkdir(parents=True)
    (victim / "etc" / "hosts").write_text("x", encoding="utf-8")

    safe_delete(victim, tmp_path)

    assert not victim.exists()


def test_safe_delete_refuses_base_and_outside_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()

    with pytest.raises(ValueError):
        safe_delete(base, base)
    with pytest.raises(ValueError):
        safe_delete(outside, base)
    assert outside.exists()


def test_safe_delete_unlinks_symlink_without_following(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    target = tmp_path / "precious"
    target.mkdir()
    (target / "keep.txt").write_text("keep", encoding="utf-8")
    link = base / "link"
    link.symlink_to(target)

    safe_delete(link, base)

    assert not link.is_symlink()
    assert (target / "keep.txt").exists()


def test_safe_delete_ignores_missing_path(tmp_path: Path) -> None:
    safe_delete(tmp_path / "gone", tmp_path)


def test_remove_tree_handles_read_only_directories(tmp_path: Path) -> None:
    root = tmp_path / "rootfs"
    locked = root / "locked"
    locked.mkdir(parents=True)
    (locked / "file").write_text("x", encoding="utf-8")
    os.chmod(locked, 0o555)

    remove_tree(root)

    assert not root.exists()


def test_file_lock_serialises_holders(tmp_path: Path) -> None:
    lock_path = tmp_path / "locks" / "env.lock"
    order: list[str] = []
    entered = threading.Event()

    def second_holder() -> None:
        entered.wait(timeout=5)
        with file_lock(lock_path):
            order.append("second")

    worker = threading.Thread(target=second_holder)
    with file_lock(lock_path):
        worker.start()
        entered.set()
        time.sleep(0.1)
        order.append("first")
    worker.join(timeout=5)

    assert order == ["first", "second"]


def test_temp_directory_is_removed_on_exit(tmp_path: Path) -> None:
    with temp_directory(parent=tmp_path) as scratch:
        (scratch / "file").write_text("x", encoding="utf-8")
        assert scratch.is_dir()
    assert not scratch.exists()
