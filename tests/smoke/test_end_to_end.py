"""
alpack — end-to-end smoke test

File: tests/smoke/test_end_to_end.py

Purpose
- Drive setup, list, run, show and remove through the CLI against a local HTTP mirror
  and a stand-in proot binary that records its argv.
"""

from __future__ import annotations

import functools
import json
import os
import threading
from collections.abc import Callable, Iterator
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import pytest

from alpack.ui.cli import run_cli


class _QuietHandler(SimpleHTTPRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        return


@pytest.fixture
def mirror(
    tmp_path: Path,
    build_archive: Callable[..., Any],
    releases_document: Callable[..., str],
) -> Iterator[str]:
    docroot = tmp_path / "www"
    release_dir = docroot / "alpine" / "latest-stable" / "releases" / "x86_64"
    release_dir.mkdir(parents=True)
    built = build_archive(name="alpine-minirootfs-3.21.2-x86_64.tar.gz")
    (release_dir / built.path.name).write_bytes(built.path.read_bytes())
    (release_dir / "latest-releases.yaml").write_text(
        releases_document(version="3.21.2", file=built.path.name, sha256=built.sha256),
        encoding="utf-8",
    )

    handler = functools.partial(_QuietHandler, directory=str(docroot))
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/alpine/"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.mark.smoke
def test_environment_lifecycle_through_cli(
    tmp_path: Path,
    mirror: str,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    home = tmp_path / "home"
    home.mkdir()
    argv_log = tmp_path / "proot-argv.txt"
    fake_proot = tmp_path / "bin" / "proot"
    fake_proot.parent.mkdir()
    fake_proot.write_text(f"#!/bin/sh\nprintf '%s\\n' \"$@\" > '{argv_log}'\nexit 3\n")
    fake_proot.chmod(0o755)

    for name in list(os.environ):
        if name.startswith("ALPACK_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("ALPACK_HOME", str(tmp_path / "envs"))
    monkeypatch.setenv("ALPACK_CACHE", str(tmp_path / "cache"))
    monkeypatch.setenv("ALPACK_MIRROR_URL", mirror)
    monkeypatch.setenv("ALPACK_SANDBOX_PROOT_PATH", str(fake_proot))
    monkeypatch.setenv("NO_COLOR", "1")

    assert run_cli(["setup", "dev", "--arch", "x86_64", "--json"]) == 0
    setup = json.loads(capsys.readouterr().out)
    assert setup["changed"] is True
    assert setup["environment"]["state"] == "ready"
    assert setup["environment"]["release_version"] == "3.21.2"
    root = Path(setup["environment"]["root_path"])
    assert (root / "bin" / "busybox").is_file()
    assert (root / "etc" / "apk" / "repositories").read_text(encoding="utf-8").startswith(
        f"{mirror}latest-stable/main"
    )

    assert run_cli(["setup", "dev", "--arch", "x86_64", "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["changed"] is False

    assert run_cli(["run", "dev", "-0", "--", "apk", "info"]) == 3
    recorded = argv_log.read_text(encoding="utf-8").splitlines()
    assert recorded[:2] == ["-r", str(root)]
    assert "-0" in recorded
    assert recorded[-2:] == ["apk", "info"]

    assert run_cli(["show", "dev", "--json"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["populated"] is True
    assert shown["os_release"] == "Alpine Linux edge"

    assert run_cli(["remove", "dev", "--json"]) == 0
    capsys.readouterr()
    assert not root.exists()
    assert run_cli(["list", "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["environments"] == []
