"""Unit tests for core domain models."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone

import pytest

from alpack.domain import models


def _utc_dt() -> datetime:
    return datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


def _environment(**overrides: object) -> models.Environment:
    values: dict[str, object] = {
        "name": "dev",
        "root_path": "/home/tester/.alpack/dev",
        "channel": models.Channel.STABLE,
        "architecture": "x86_64",
        "created_at": _utc_dt(),
    }
    values.update(overrides)
    return models.Environment(**values)  # type: ignore[arg-type]


def test_environment_json_roundtrip_is_canonical() -> None:
    env = _environment(
        state=models.EnvironmentState.READY,
        release_version="3.21.2",
        archive_checksum="a" * 64,
        backend_kind=models.BackendKind.BWRAP,
    )

    raw = env.to_json()
    restored = models.Environment.from_json(raw)

    assert restored == env
    assert restored.is_ready
    payload = json.loads(raw)
    assert payload["created_at"] == "2026-02-01T12:00:00.000000Z"
    assert payload["backend_kind"] == "bwrap"
    assert list(payload) == sorted(payload)


def test_environment_defaults_to_pending() -> None:
    env = models.Environment.from_dict(
        {
            "name": "dev",
            "root_path": "/srv/dev",
            "channel": "edge",
            "architecture": "loongarch64",
            "created_at": "2026-02-01T12:00:00Z",
        }
    )
    assert env.state is models.EnvironmentState.PENDING
    assert not env.is_ready
    assert env.backend_kind is None


def test_non_utc_datetimes_are_normalized() -> None:
    offset = datetime(2026, 2, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    env = models.Environment.from_dict(
        {
            "name": "dev",
            "root_path": "/srv/dev",
            "channel": "stable",
            "architecture": "x86_64",
            "created_at": offset.isoformat(),
        }
    )
    assert env.created_at == _utc_dt()


@pytest.mark.parametrize("name", ["", "-dev", ".hidden", "a/b", "x" * 65, "dev env"])
def test_invalid_environment_names_are_rejected(name: str) -> None:
    with pytest.raises(ValueError):
        _environment(name=name)


def test_loongarch_is_edge_only() -> None:
    with pytest.raises(ValueError, match="not published on stable"):
        _environment(architecture="loongarch64")
    assert _environment(channel=models.Channel.EDGE, architecture="loongarch64")


def test_unknown_and_missing_fields_are_rejected() -> None:
    payload = _environment().to_dict()
    with pytest.raises(ValueError, match="unexpected fields"):
        models.Environment.from_dict({**payload, "color": "blue"})

    del payload["root_path"]
    with pytest.raises(ValueError, match="missing required fields"):
        models.Environment.from_dict(payload)


def test_naive_datetime_and_bad_checksum_are_rejected() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        _environment(created_at=datetime(2026, 2, 1))
    with pytest.raises(ValueError, match="SHA-256"):
        _environment(archive_checksum="ABC")


def test_from_json_rejects_non_objects() -> None:
    with pytest.raises(ValueError, match="JSON root must be an object"):
        models.Environment.from_json("[]")
    with pytest.raises(ValueError, match="invalid JSON"):
        models.Environment.from_json("{")


def test_cached_archive_roundtrip_and_file_name() -> None:
    archive = models.CachedArchive(
        channel=models.Channel.STABLE,
        architecture="aarch64",
        source_url="https://mirror.test/alpine-minirootfs-3.21.2-aarch64.tar.gz",
        local_path="/cache/stable/aarch64/alpine-minirootfs-3.21.2-aarch64.tar.gz",
        checksum="b" * 64,
        version="3.21.2",
        fetched_at=_utc_dt(),
    )
    assert models.CachedArchive.from_json(archive.to_json()) == archive
    assert archive.file_name == "alpine-minirootfs-3.21.2-aarch64.tar.gz"


def test_bind_mount_requires_absolute_paths() -> None:
    bind = models.BindMount(host_path="/srv", guest_path="/mnt/srv", mode=models.BindMode.READ_ONLY)
    assert bind.read_only
    assert bind.origin is models.BindOrigin.USER

    with pytest.raises(ValueError, match="absolute"):
        models.BindMount(host_path="relative", guest_path="/x")


def test_execution_request_validation() -> None:
    request = models.ExecutionRequest(
        environment="dev",
        command_form=models.CommandForm.SHELL,
        payload=("echo hi",),
        env_overrides={"FOO": "bar"},
    )
    assert request.payload == ("echo hi",)

    with pytest.raises(ValueError, match="exactly one command string"):
        models.ExecutionRequest(
            environment="dev", command_form=models.CommandForm.SHELL, payload=("a", "b")
        )
    with pytest.raises(ValueError, match="absolute"):
        models.ExecutionRequest(environment="dev", working_dir="tmp")
    with pytest.raises(ValueError, match="invalid variable name"):
        models.ExecutionRequest(environment="dev", env_overrides={"A=B": "c"})


def test_channel_release_dirs() -> None:
    assert models.Channel.STABLE.release_dir == "latest-stable"
    assert models.Channel.EDGE.release_dir == "edge"
    assert "loongarch64" in models.Channel.EDGE.architectures
