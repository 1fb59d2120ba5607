"""Executable CLI entrypoint for ``alpack``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from alpack.errors import AlpackError, BackendSpawnError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Process exit codes alpack itself produces; guest codes pass through as-is."""

    SUCCESS = 0
    OPERATION_ERROR = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 70
    BACKEND_SPAWN_ERROR = 125
    INTERRUPTED = 130


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m alpack`` and the console script."""

    try:
        from alpack.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except KeyboardInterrupt:
        _write_stderr("interrupted")
        return int(ExitCode.INTERRUPTED)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _route_exception(exc)
        _emit_failure(exc, exit_code)
        return int(exit_code)


def _normalize_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and not isinstance(raw_code, bool) and 0 <= raw_code <= 255:
        return raw_code
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _route_exception(exc: BaseException) -> ExitCode:
    config_error_types = _load_config_error_types()

    for item in _iter_exception_chain(exc):
        if isinstance(item, BackendSpawnError):
            return ExitCode.BACKEND_SPAWN_ERROR
        if isinstance(item, AlpackError):
            return ExitCode.OPERATION_ERROR
        if isinstance(item, config_error_types):
            return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _load_config_error_types() -> tuple[type[BaseException], ...]:
    from alpack.config.loader import ConfigLoadError
    from alpack.config.schema import ConfigValidationError

    return (ConfigLoadError, ConfigValidationError)


def _iter_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and then each explicit cause or unsuppressed context, once each."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def format_failure(exc: BaseException) -> str:
    """``error: [<kind>] <message>`` for taxonomy errors, ``error: <message>`` otherwise."""

    for item in _iter_exception_chain(exc):
        if isinstance(item, AlpackError):
            return f"error: [{item.kind.value}] {item}"
    return f"error: {str(exc).strip() or exc.__class__.__name__}"


def _emit_failure(exc: BaseException, exit_code: ExitCode) -> None:
    if exit_code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        return
    _write_stderr(format_failure(exc))


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "format_failure"]
