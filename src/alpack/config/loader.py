"""
alpack — runtime config loader.

File: src/alpack/config/loader.py

Purpose
- Build the effective config for one invocation from the defaults, the TOML file,
  ``ALPACK_*`` environment variables and command-line flags, in rising precedence.

Functional requirements
- Every field ``<section>.<field>`` can be set with ``ALPACK_<SECTION>_<FIELD>``;
  values are coerced to the type of the field's default.
- The short aliases ``ALPACK_HOME`` and ``ALPACK_CACHE`` are honoured; the long
  form wins when both are set.
- Path fields expand ``~`` and ``$VAR`` and are resolved against the directory of
  the config file.
- A config file named explicitly (argument or ``ALPACK_CONFIG``) must exist; the
  default location is optional.
- ``alpack config --use-...`` setters write validated values back into the file
  atomically, keeping the settings already there. Comments are not preserved.
"""

from __future__ import annotations

import json
import os
import string
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from alpack.config.schema import PATH_FIELDS, assert_valid_config, default_config, merge_config
from alpack.constants import DEFAULT_CONFIG_PATH
from alpack.utils.fs import atomic_write

ENV_PREFIX: Final[str] = "ALPACK_"
CONFIG_PATH_ENV: Final[str] = "ALPACK_CONFIG"

_ENV_ALIASES: Final[dict[str, tuple[str, str]]] = {
    "ALPACK_HOME": ("paths", "base_dir"),
    "ALPACK_CACHE": ("paths", "cache_dir"),
}
# Fields without a default still get a variable.
_OPTIONAL_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("sandbox", "proot_path"),
    ("sandbox", "bwrap_path"),
)
_BOOLEANS: Final[dict[str, bool]] = {
    "1": True,
    "true": True,
    "yes": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "off": False,
}


class ConfigLoadError(ValueError):
    """The config file cannot be read or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the effective config: CLI > env > file > defaults.

    ``cli_overrides`` maps dotted field names (``"mirror.url"``) to values; ``None``
    values are ignored so unset flags can be passed straight through.
    """

    env_map = dict(os.environ if environ is None else environ)
    explicit = config_path is not None or bool(env_map.get(CONFIG_PATH_ENV, "").strip())
    path = resolve_config_path(config_path, environ=env_map)

    # The file is validated on its own first so env coercion can trust field types.
    config = assert_valid_config(merge_config(default_config(), _read_toml(path, explicit)))
    config = merge_config(config, _env_overrides(config, env_map))
    config = merge_config(config, _nest_cli_overrides(cli_overrides or {}))
    config = assert_valid_config(config)

    return normalize_paths(config, base_dir=path.parent, environ=env_map)


def resolve_config_path(
    config_path: str | Path | None = None, *, environ: Mapping[str, str] | None = None
) -> Path:
    env_map = os.environ if environ is None else environ
    if config_path is not None:
        return Path(config_path).expanduser().resolve()
    from_env = env_map.get(CONFIG_PATH_ENV, "").strip()
    if from_env:
        return Path(from_env).expanduser().resolve()
    return _expand_user(DEFAULT_CONFIG_PATH, env_map)


def normalize_paths(
    config: Mapping[str, Any],
    *,
    base_dir: Path,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return a copy of ``config`` with every path field absolute and normalized."""

    env_map = os.environ if environ is None else environ
    normalized = merge_config({}, config)
    for section, field in PATH_FIELDS:
        raw = normalized.get(section, {}).get(field)
        if not isinstance(raw, str):
            continue
        candidate = _expand_user(string.Template(raw).safe_substitute(env_map), env_map)
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        normalized[section][field] = Path(os.path.normpath(candidate)).as_posix()
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(config, sort_keys=True, indent=2, ensure_ascii=False)


def save_config_values(
    updates: Mapping[str, object],
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> dict[str, object]:
    """Persist dotted ``updates`` into the TOML config file.

    Settings already in the file are kept. The merged result is validated before
    anything is written, and the validated values are returned by dotted name.
    """

    env_map = os.environ if environ is None else environ
    path = resolve_config_path(config_path, environ=env_map)
    document = _read_toml(path, False)
    nested = _nest_cli_overrides(updates)
    for section, fields in nested.items():
        table = document.setdefault(section, {})
        if not isinstance(table, dict):
            raise ConfigLoadError(f"[{section}] in {path} is not a table")
        table.update(fields)

    validated = assert_valid_config(merge_config(default_config(), document))
    saved: dict[str, object] = {}
    for section, fields in nested.items():
        for field in fields:
            document[section][field] = validated[section][field]
            saved[f"{section}.{field}"] = validated[section][field]

    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write(path, render_toml(document))
    return saved


def render_toml(document: Mapping[str, object]) -> str:
    """Render a two-level config document (tables of scalars) as TOML."""

    blocks: list[str] = []
    for section, fields in document.items():
        if not isinstance(fields, Mapping):
            raise ConfigLoadError(f"cannot write top-level value {section!r}; expected a table")
        lines = [f"[{section}]"]
        lines.extend(f"{field} = {_toml_value(value)}" for field, value in fields.items())
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def env_bindings(config: Mapping[str, object] | None = None) -> dict[str, tuple[str, ...]]:
    """Map every recognised ``ALPACK_*`` variable to the config field it sets."""

    bindings = _bindings(default_config() if config is None else config)
    return {name: path for name, (path, _) in sorted(bindings.items())}


def _read_toml(path: Path, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _bindings(config: Mapping[str, object]) -> dict[str, tuple[tuple[str, str], object]]:
    """Variable name -> (field path, template value used for coercion)."""

    found: dict[str, tuple[tuple[str, str], object]] = {}
    for section, fields in config.items():
        if not isinstance(fields, Mapping):
            continue
        for field, value in fields.items():
            if isinstance(value, (bool, int, float, str)):
                found[_env_name(section, field)] = ((section, field), value)
    for section, field in _OPTIONAL_FIELDS:
        found.setdefault(_env_name(section, field), ((section, field), ""))
    return found


def _env_overrides(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}

    for name, (section, field) in _ENV_ALIASES.items():
        raw = environ.get(name, "").strip()
        if raw:
            overrides.setdefault(section, {})[field] = raw

    for name, (path, template) in sorted(_bindings(config).items()):
        raw = environ.get(name)
        if raw is None:
            continue
        section, field = path
        overrides.setdefault(section, {})[field] = _coerce(name, path, raw.strip(), template)
    return overrides


def _coerce(name: str, path: tuple[str, str], value: str, template: object) -> object:
    dotted = ".".join(path)
    if isinstance(template, bool):
        if value.lower() not in _BOOLEANS:
            raise ConfigLoadError(
                f"{name} -> {dotted} must be a boolean (true/false/1/0/yes/no/on/off)"
            )
        return _BOOLEANS[value.lower()]
    if isinstance(template, (int, float)):
        try:
            return type(template)(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {dotted} must be a number") from exc
    return value


def _nest_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for key, value in sorted(cli_overrides.items()):
        if value is None:
            continue
        section, dot, field = key.partition(".")
        if not dot or not section or not field:
            raise ConfigLoadError(f"invalid CLI override key {key!r}; expected section.field")
        nested.setdefault(section, {})[field] = value
    return nested


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        # JSON string escapes are valid TOML basic-string escapes.
        return json.dumps(value, ensure_ascii=False)
    raise ConfigLoadError(f"cannot write {type(value).__name__} values to the config file")


def _expand_user(raw: str, environ: Mapping[str, str]) -> Path:
    home = environ.get("HOME")
    if home and (raw == "~" or raw.startswith("~/")):
        return Path(home + raw[1:])
    return Path(raw).expanduser()


def _env_name(section: str, field: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{field.upper()}"


__all__ = [
    "CONFIG_PATH_ENV",
    "ConfigLoadError",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_bindings",
    "load_config",
    "normalize_paths",
    "render_toml",
    "resolve_config_path",
    "save_config_values",
]
