"""
alpack — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Short ``ALPACK_HOME``/``ALPACK_CACHE`` aliases and their interaction with long names.
- Path normalization for ``~``, ``$VAR`` and config-relative paths.
- Saving setter values back into the TOML file.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path

import pytest

from alpack.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_bindings,
    load_config,
    render_toml,
    resolve_config_path,
    save_config_values,
)
from alpack.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_defaults_expand_against_home(tmp_path: Path) -> None:
    loaded = load_config(environ={"HOME": str(tmp_path)})

    assert loaded["paths"]["base_dir"] == (tmp_path / ".alpack").as_posix()
    assert loaded["paths"]["cache_dir"] == (tmp_path / ".cache" / "alpack").as_posix()
    assert loaded["mirror"]["default_channel"] == "stable"
    assert loaded["sandbox"]["backend"] == "proot"


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    _write_config(
        config_path,
        """
[mirror]
default_channel = "edge"
timeout_seconds = 10
""".strip(),
    )
    environ = {"HOME": str(tmp_path), "ALPACK_MIRROR_TIMEOUT_SECONDS": "20"}

    file_loaded = load_config(config_path, environ={"HOME": str(tmp_path)})
    env_loaded = load_config(config_path, environ=environ)
    cli_loaded = load_config(
        config_path, environ=environ, cli_overrides={"mirror.timeout_seconds": 30.0}
    )

    assert file_loaded["mirror"]["default_channel"] == "edge"
    assert file_loaded["mirror"]["timeout_seconds"] == 10.0
    assert env_loaded["mirror"]["timeout_seconds"] == 20.0
    assert cli_loaded["mirror"]["timeout_seconds"] == 30.0
    assert cli_loaded["mirror"]["default_channel"] == "edge"


def test_cli_override_of_mirror_url_gets_trailing_slash(tmp_path: Path) -> None:
    loaded = load_config(
        environ={"HOME": str(tmp_path)},
        cli_overrides={"mirror.url": "https://mirror.test/alpine", "sandbox.backend": None},
    )
    assert loaded["mirror"]["url"] == "https://mirror.test/alpine/"
    assert loaded["sandbox"]["backend"] == "proot"


def test_short_aliases_apply_and_long_names_win(tmp_path: Path) -> None:
    aliased = load_config(
        environ={
            "HOME": str(tmp_path),
            "ALPACK_HOME": str(tmp_path / "envs"),
            "ALPACK_CACHE": str(tmp_path / "cache"),
        }
    )
    assert aliased["paths"]["base_dir"] == (tmp_path / "envs").as_posix()
    assert aliased["paths"]["cache_dir"] == (tmp_path / "cache").as_posix()

    both = load_config(
        environ={
            "HOME": str(tmp_path),
            "ALPACK_HOME": str(tmp_path / "short"),
            "ALPACK_PATHS_BASE_DIR": str(tmp_path / "long"),
        }
    )
    assert both["paths"]["base_dir"] == (tmp_path / "long").as_posix()


def test_env_booleans_are_coerced(tmp_path: Path) -> None:
    loaded = load_config(
        environ={"HOME": str(tmp_path), "ALPACK_SANDBOX_BIND_GROUPS": "off"}
    )
    assert loaded["sandbox"]["bind_groups"] is False

    with pytest.raises(ConfigLoadError, match="ALPACK_SANDBOX_EXTRA_BINDS"):
        load_config(environ={"HOME": str(tmp_path), "ALPACK_SANDBOX_EXTRA_BINDS": "maybe"})


def test_relative_and_variable_paths_are_normalized(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "config.toml"
    _write_config(
        config_path,
        """
[paths]
base_dir = "envs"
cache_dir = "$ALPACK_TEST_ROOT/cache"

[sandbox]
proot_path = "~/bin/proot"
""".strip(),
    )

    loaded = load_config(
        config_path,
        environ={"HOME": str(tmp_path), "ALPACK_TEST_ROOT": str(tmp_path / "data")},
    )

    assert loaded["paths"]["base_dir"] == (tmp_path / "conf" / "envs").as_posix()
    assert loaded["paths"]["cache_dir"] == (tmp_path / "data" / "cache").as_posix()
    assert loaded["sandbox"]["proot_path"] == (tmp_path / "bin" / "proot").as_posix()


def test_optional_backend_path_env_binding(tmp_path: Path) -> None:
    loaded = load_config(
        environ={"HOME": str(tmp_path), "ALPACK_SANDBOX_BWRAP_PATH": "/opt/bwrap"}
    )
    assert loaded["sandbox"]["bwrap_path"] == "/opt/bwrap"
    assert env_bindings()["ALPACK_SANDBOX_BWRAP_PATH"] == ("sandbox", "bwrap_path")


def test_explicit_missing_config_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "missing.toml")

    with pytest.raises(ConfigLoadError):
        load_config(
            environ={"HOME": str(tmp_path), "ALPACK_CONFIG": str(tmp_path / "missing.toml")}
        )


def test_config_path_env_is_resolved(tmp_path: Path) -> None:
    target = tmp_path / "custom.toml"
    assert resolve_config_path(environ={"ALPACK_CONFIG": str(target)}) == target.resolve()


def test_invalid_toml_and_unknown_fields_are_reported(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    _write_config(broken, "[mirror\nurl = 1")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken)

    unknown = tmp_path / "unknown.toml"
    _write_config(unknown, "[mirror]\nretries = 3\n")
    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(unknown, environ={"HOME": str(tmp_path)})
    assert [issue.path for issue in excinfo.value.issues] == ["mirror.retries"]


def test_dump_is_deterministic(tmp_path: Path) -> None:
    environ = {"HOME": str(tmp_path)}
    first = dump_effective_config(load_config(environ=environ))
    second = dump_effective_config(load_config(environ=environ))

    assert first == second
    assert list(json.loads(first)) == sorted(json.loads(first))


def test_save_config_values_keeps_existing_settings(tmp_path: Path) -> None:
    config_path = tmp_path / "alpack" / "config.toml"
    _write_config(config_path, '[mirror]\ntimeout_seconds = 15.0\n')
    environ = {"HOME": str(tmp_path)}

    saved = save_config_values(
        {
            "sandbox.backend": "bwrap",
            "mirror.default_channel": "edge",
            "mirror.url": "https://mirror.test/alpine",
        },
        config_path,
        environ=environ,
    )

    assert saved == {
        "mirror.default_channel": "edge",
        "mirror.url": "https://mirror.test/alpine/",
        "sandbox.backend": "bwrap",
    }
    with config_path.open("rb") as handle:
        written = tomllib.load(handle)
    assert written == {
        "mirror": {
            "timeout_seconds": 15.0,
            "default_channel": "edge",
            "url": "https://mirror.test/alpine/",
        },
        "sandbox": {"backend": "bwrap"},
    }

    loaded = load_config(config_path, environ=environ)
    assert loaded["sandbox"]["backend"] == "bwrap"
    assert loaded["mirror"]["timeout_seconds"] == 15.0


def test_save_config_values_creates_the_default_file(tmp_path: Path) -> None:
    environ = {"HOME": str(tmp_path)}

    save_config_values({"paths.cache_dir": "/var/cache/alpack"}, environ=environ)

    config_path = tmp_path / ".config" / "alpack" / "config.toml"
    assert config_path.read_text(encoding="utf-8") == '[paths]\ncache_dir = "/var/cache/alpack"\n'


def test_save_config_values_rejects_invalid_values_without_writing(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    _write_config(config_path, '[sandbox]\nbackend = "proot"\n')

    with pytest.raises(ConfigValidationError, match="mirror.url"):
        save_config_values({"mirror.url": "ftp://mirror.test/"}, config_path, environ={})

    assert config_path.read_text(encoding="utf-8") == '[sandbox]\nbackend = "proot"\n'


def test_render_toml_escapes_strings() -> None:
    rendered = render_toml(
        {"paths": {"base_dir": 'C:\\odd "dir"'}, "observability": {"log_to_stderr": True}}
    )

    assert tomllib.loads(rendered) == {
        "paths": {"base_dir": 'C:\\odd "dir"'},
        "observability": {"log_to_stderr": True},
    }
    with pytest.raises(ConfigLoadError):
        render_toml({"schema_version": 1})
