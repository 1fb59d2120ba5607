"""
alpack — configuration schema and validation.

File: src/alpack/config/schema.py

Purpose
- Hold the built-in defaults for every config section and the field tables that
  validate them.

Functional requirements
- Unknown fields, wrong types and out-of-range values are reported with a dotted
  path (``sandbox.backend``) instead of failing on the first one.
- A ``meta.schema_version`` other than the supported one is an error with guidance.
- The mirror URL must be http(s) and is normalized to end with ``/``.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict
from urllib.parse import urlsplit

from alpack.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BASE_DIR,
    DEFAULT_CACHE_DIR,
    DEFAULT_LOG_DIR,
    DEFAULT_MIRROR_URL,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

BACKEND_NAMES: Final[tuple[str, ...]] = ("proot", "bwrap")
CHANNEL_NAMES: Final[tuple[str, ...]] = ("stable", "edge")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Config paths that are expanded (``~``, ``$VAR``) and made absolute.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "base_dir"),
    ("paths", "cache_dir"),
    ("paths", "log_dir"),
    ("sandbox", "proot_path"),
    ("sandbox", "bwrap_path"),
)


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    base_dir: str
    cache_dir: str
    log_dir: str


class MirrorConfig(TypedDict):
    url: str
    default_channel: Literal["stable", "edge"]
    timeout_seconds: float


class SandboxConfig(TypedDict):
    backend: Literal["proot", "bwrap"]
    bind_groups: bool
    extra_binds: bool
    proot_path: NotRequired[str]
    bwrap_path: NotRequired[str]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_to_stderr: bool
    redact_secrets: bool


class AlpackConfig(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    mirror: MirrorConfig
    sandbox: SandboxConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[AlpackConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "paths": {
        "base_dir": DEFAULT_BASE_DIR,
        "cache_dir": DEFAULT_CACHE_DIR,
        "log_dir": DEFAULT_LOG_DIR,
    },
    "mirror": {
        "url": DEFAULT_MIRROR_URL,
        "default_channel": "stable",
        "timeout_seconds": 60.0,
    },
    "sandbox": {
        "backend": "proot",
        "bind_groups": True,
        "extra_binds": True,
    },
    "observability": {
        "log_level": "INFO",
        "log_to_stderr": False,
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """One validation failure at a dotted config path such as ``mirror.url``."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {item.path}: {item.message}" for item in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <root>: unknown failure"))


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)


# A checker returns the normalized value, or None after recording an issue.
_Checker = Callable[[object, str, _IssueCollector], object | None]


@dataclass(frozen=True, slots=True)
class _Field:
    check: _Checker
    required: bool = True


def default_config() -> AlpackConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "update config.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade alpack"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; neither argument is modified."""

    merged = copy.deepcopy(dict(base))
    for key in sorted(overlay):
        value = overlay[key]
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config(current, value)
        elif isinstance(value, Mapping):
            merged[key] = merge_config({}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Check every section against its field table; issues carry dotted paths."""

    issues = _IssueCollector()
    normalized: dict[str, Any] = {}

    root = _check_object(config, "<root>", issues)
    if root is not None:
        _check_keys(root, dict.fromkeys(_SECTIONS, True), "", issues)
        for section_name, fields in _SECTIONS.items():
            if section_name not in root:
                continue
            section = _check_object(root[section_name], section_name, issues)
            if section is None:
                continue
            _check_keys(section, {k: f.required for k, f in fields.items()}, section_name, issues)
            normalized[section_name] = {}
            for key, field in fields.items():
                if key not in section:
                    continue
                parsed = field.check(section[key], f"{section_name}.{key}", issues)
                if parsed is not None:
                    normalized[section_name][key] = parsed

    found = issues.items()
    if found:
        return ConfigValidationResult(config=None, issues=found)
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


# ---------------------------------------------------------------------------
# Checkers
# ---------------------------------------------------------------------------


def _check_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected table, got {type(value).__name__}")
        return None
    return {str(key): item for key, item in value.items()}


def _check_keys(
    payload: Mapping[str, object], fields: Mapping[str, bool], path: str, issues: _IssueCollector
) -> None:
    prefix = f"{path}." if path else ""
    for key in sorted(payload):
        if key not in fields:
            issues.add(prefix + key, "unknown field")
    for key in sorted(fields):
        if fields[key] and key not in payload:
            issues.add(prefix + key, "missing required field")


def _check_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    text = value.strip()
    if not text:
        issues.add(path, "must not be empty")
        return None
    if "\x00" in text:
        issues.add(path, "must not contain NUL bytes")
        return None
    return text


def _check_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _check_schema_version(value: object, path: str, issues: _IssueCollector) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if value != ConfigSchemaVersion:
        issues.add(path, migration_guidance(value))
        return None
    return value


def _check_timeout(value: object, path: str, issues: _IssueCollector) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    seconds = float(value)
    if not math.isfinite(seconds) or seconds < 1.0:
        issues.add(path, "must be a finite number >= 1")
        return None
    return seconds


def _check_mirror_url(value: object, path: str, issues: _IssueCollector) -> str | None:
    text = _check_text(value, path, issues)
    if text is None:
        return None
    parts = urlsplit(text)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        issues.add(path, f"must be an http(s) URL, got {text!r}")
        return None
    # Release paths are appended verbatim.
    return text if text.endswith("/") else text + "/"


def _one_of(*allowed: str) -> _Checker:
    def check(value: object, path: str, issues: _IssueCollector) -> str | None:
        text = _check_text(value, path, issues)
        if text is not None and text not in allowed:
            issues.add(path, f"invalid value {text!r}; expected one of: {', '.join(allowed)}")
            return None
        return text

    return check


_SECTIONS: Final[dict[str, dict[str, _Field]]] = {
    "meta": {"schema_version": _Field(_check_schema_version)},
    "paths": {
        "base_dir": _Field(_check_text),
        "cache_dir": _Field(_check_text),
        "log_dir": _Field(_check_text),
    },
    "mirror": {
        "url": _Field(_check_mirror_url),
        "default_channel": _Field(_one_of(*CHANNEL_NAMES)),
        "timeout_seconds": _Field(_check_timeout),
    },
    "sandbox": {
        "backend": _Field(_one_of(*BACKEND_NAMES)),
        "bind_groups": _Field(_check_bool),
        "extra_binds": _Field(_check_bool),
        "proot_path": _Field(_check_text, required=False),
        "bwrap_path": _Field(_check_text, required=False),
    },
    "observability": {
        "log_level": _Field(_one_of(*LOG_LEVELS)),
        "log_to_stderr": _Field(_check_bool),
        "redact_secrets": _Field(_check_bool),
    },
}


__all__ = [
    "BACKEND_NAMES",
    "CHANNEL_NAMES",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "AlpackConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
