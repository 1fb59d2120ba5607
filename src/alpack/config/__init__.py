"""
alpack config package public API.

File: src/alpack/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``~/.config/alpack/config.toml`` + ``ALPACK_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from alpack.config.loader import (
    CONFIG_PATH_ENV,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    env_bindings,
    load_config,
    normalize_paths,
    render_toml,
    resolve_config_path,
    save_config_values,
)
from alpack.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    AlpackConfig,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "PATH_FIELDS",
    "AlpackConfig",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_bindings",
    "load_config",
    "merge_config",
    "normalize_paths",
    "render_toml",
    "resolve_config_path",
    "save_config_values",
    "validate_config",
]
