"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum, StrEnum
from pathlib import PurePosixPath
from typing import NoReturn, TypeVar

from alpack.constants import EDGE_ARCHITECTURES, REGISTRY_SCHEMA_VERSION, STABLE_ARCHITECTURES

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

ENVIRONMENT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")
_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
_MAX_TEXT = 4096


class Channel(StrEnum):
    STABLE = "stable"
    EDGE = "edge"

    @property
    def release_dir(self) -> str:
        """Directory name of the channel on an Alpine mirror."""
        return "latest-stable" if self is Channel.STABLE else "edge"

    @property
    def architectures(self) -> tuple[str, ...]:
        return EDGE_ARCHITECTURES if self is Channel.EDGE else STABLE_ARCHITECTURES


class BackendKind(StrEnum):
    PROOT = "proot"
    BWRAP = "bwrap"


class EnvironmentState(StrEnum):
    PENDING = "pending"
    READY = "ready"


class BindMode(StrEnum):
    READ_WRITE = "read-write"
    READ_ONLY = "read-only"


class BindOrigin(StrEnum):
    DEFAULT = "default"
    USER = "user-supplied"


class CommandForm(StrEnum):
    ARGV = "argv"
    SHELL = "shell"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {}
        for item in fields(self):  # type: ignore[arg-type]
            out[item.name] = _serialize_value(getattr(self, item.name))
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, indent=2, ensure_ascii=False) + "\n"

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


@dataclass(frozen=True, slots=True)
class Environment(CanonicalModel):
    """A named, registered Alpine root filesystem."""

    name: str
    root_path: str
    channel: Channel
    architecture: str
    created_at: datetime
    backend_kind: BackendKind | None = None
    state: EnvironmentState = EnvironmentState.PENDING
    release_version: str | None = None
    archive_checksum: str | None = None
    mirror_url: str | None = None
    schema_version: int = REGISTRY_SCHEMA_VERSION

    def __post_init__(self) -> None:
        _as_environment_name(self.name, "Environment.name")
        _as_absolute_path(self.root_path, "Environment.root_path")
        _as_enum(Channel, self.channel, "Environment.channel")
        _as_architecture(self.architecture, Channel(self.channel), "Environment.architecture")
        _as_datetime(self.created_at, "Environment.created_at")
        if self.backend_kind is not None:
            _as_enum(BackendKind, self.backend_kind, "Environment.backend_kind")
        _as_enum(EnvironmentState, self.state, "Environment.state")
        if self.archive_checksum is not None:
            _as_sha256(self.archive_checksum, "Environment.archive_checksum")

    @property
    def is_ready(self) -> bool:
        return self.state is EnvironmentState.READY

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Environment:
        parsed = _expect_object(
            data,
            "Environment",
            required={"name", "root_path", "channel", "architecture", "created_at"},
            optional={
                "backend_kind",
                "state",
                "release_version",
                "archive_checksum",
                "mirror_url",
                "schema_version",
            },
        )
        backend = parsed.get("backend_kind")
        return cls(
            name=_as_str(parsed["name"], "Environment.name"),
            root_path=_as_str(parsed["root_path"], "Environment.root_path"),
            channel=_as_enum(Channel, parsed["channel"], "Environment.channel"),
            architecture=_as_str(parsed["architecture"], "Environment.architecture"),
            created_at=_as_datetime(parsed["created_at"], "Environment.created_at"),
            backend_kind=(
                None
                if backend is None
                else _as_enum(BackendKind, backend, "Environment.backend_kind")
            ),
            state=_as_enum(
                EnvironmentState,
                parsed.get("state", EnvironmentState.PENDING.value),
                "Environment.state",
            ),
            release_version=_as_optional_str(
                parsed.get("release_version"), "Environment.release_version"
            ),
            archive_checksum=_as_optional_str(
                parsed.get("archive_checksum"), "Environment.archive_checksum"
            ),
            mirror_url=_as_optional_str(parsed.get("mirror_url"), "Environment.mirror_url"),
            schema_version=_as_int(
                parsed.get("schema_version", REGISTRY_SCHEMA_VERSION),
                "Environment.schema_version",
                minimum=1,
            ),
        )


@dataclass(frozen=True, slots=True)
class CachedArchive(CanonicalModel):
    """A downloaded minirootfs tarball, valid only while its SHA-256 matches."""

    channel: Channel
    architecture: str
    source_url: str
    local_path: str
    checksum: str
    version: str
    fetched_at: datetime

    def __post_init__(self) -> None:
        _as_enum(Channel, self.channel, "CachedArchive.channel")
        _as_architecture(self.architecture, Channel(self.channel), "CachedArchive.architecture")
        _as_str(self.source_url, "CachedArchive.source_url")
        _as_absolute_path(self.local_path, "CachedArchive.local_path")
        _as_sha256(self.checksum, "CachedArchive.checksum")
        _as_str(self.version, "CachedArchive.version")
        _as_datetime(self.fetched_at, "CachedArchive.fetched_at")

    @property
    def file_name(self) -> str:
        return PurePosixPath(self.local_path).name

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> CachedArchive:
        parsed = _expect_object(
            data,
            "CachedArchive",
            required={
                "channel",
                "architecture",
                "source_url",
                "local_path",
                "checksum",
                "version",
                "fetched_at",
            },
        )
        return cls(
            channel=_as_enum(Channel, parsed["channel"], "CachedArchive.channel"),
            architecture=_as_str(parsed["architecture"], "CachedArchive.architecture"),
            source_url=_as_str(parsed["source_url"], "CachedArchive.source_url"),
            local_path=_as_str(parsed["local_path"], "CachedArchive.local_path"),
            checksum=_as_str(parsed["checksum"], "CachedArchive.checksum"),
            version=_as_str(parsed["version"], "CachedArchive.version"),
            fetched_at=_as_datetime(parsed["fetched_at"], "CachedArchive.fetched_at"),
        )


@dataclass(frozen=True, slots=True)
class BindMount(CanonicalModel):
    """One host path made visible inside the guest."""

    host_path: str
    guest_path: str
    mode: BindMode = BindMode.READ_WRITE
    origin: BindOrigin = BindOrigin.USER
    device: bool = False

    def __post_init__(self) -> None:
        _as_absolute_path(self.host_path, "BindMount.host_path")
        _as_absolute_path(self.guest_path, "BindMount.guest_path")
        _as_enum(BindMode, self.mode, "BindMount.mode")
        _as_enum(BindOrigin, self.origin, "BindMount.origin")

    @property
    def read_only(self) -> bool:
        return self.mode is BindMode.READ_ONLY


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Everything needed to run one guest command; built per invocation and never stored."""

    environment: str
    command_form: CommandForm = CommandForm.ARGV
    payload: tuple[str, ...] = ()
    binds: tuple[str, ...] = ()
    working_dir: str | None = None
    env_overrides: Mapping[str, str] = field(default_factory=dict)
    raw_backend_args: tuple[str, ...] = ()
    as_root: bool = False
    bind_groups: bool = True
    extra_binds: bool = True
    suppress_defaults: tuple[str, ...] = ()
    backend: BackendKind | None = None

    def __post_init__(self) -> None:
        _as_str(self.environment, "ExecutionRequest.environment")
        form = _as_enum(CommandForm, self.command_form, "ExecutionRequest.command_form")
        if form is CommandForm.SHELL and len(self.payload) != 1:
            _fail("ExecutionRequest.payload", "shell form takes exactly one command string")
        if self.working_dir is not None:
            _as_absolute_path(self.working_dir, "ExecutionRequest.working_dir")
        for key in self.env_overrides:
            if not key or "=" in key:
                _fail("ExecutionRequest.env_overrides", f"invalid variable name {key!r}")


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if not value.strip():
        _fail(path, "must not be empty")
    if len(value) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return value


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _as_sha256(value: object, path: str) -> str:
    parsed = _as_str(value, path)
    if not _SHA256_RE.fullmatch(parsed):
        _fail(path, "must be a 64-character lowercase hex SHA-256 digest")
    return parsed


def _as_absolute_path(value: object, path: str) -> str:
    parsed = _as_str(value, path)
    if "\x00" in parsed:
        _fail(path, "must not contain NUL bytes")
    if not parsed.startswith("/"):
        _fail(path, f"must be an absolute path, got {parsed!r}")
    return parsed


def _as_environment_name(value: object, path: str) -> str:
    parsed = _as_str(value, path)
    if not ENVIRONMENT_NAME_PATTERN.fullmatch(parsed):
        _fail(
            path,
            f"invalid environment name {parsed!r}; use letters, digits, '.', '_' or '-' "
            "(max 64, not starting with a separator)",
        )
    return parsed


def _as_architecture(value: object, channel: Channel, path: str) -> str:
    parsed = _as_str(value, path)
    if parsed not in channel.architectures:
        allowed = ", ".join(channel.architectures)
        _fail(path, f"architecture {parsed!r} is not published on {channel.value}: {allowed}")
    return parsed


def _serialize_value(value: object) -> JSONValue:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    if isinstance(value, CanonicalModel):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {str(key): _serialize_value(item) for key, item in sorted(value.items())}
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]
    return str(value)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


__all__ = [
    "ENVIRONMENT_NAME_PATTERN",
    "BackendKind",
    "BindMode",
    "BindMount",
    "BindOrigin",
    "CachedArchive",
    "CanonicalModel",
    "Channel",
    "CommandForm",
    "Environment",
    "EnvironmentState",
    "ExecutionRequest",
    "JSONValue",
    "utc_now",
]
