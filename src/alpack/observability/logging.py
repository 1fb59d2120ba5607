"""
alpack — structured logging

File: src/alpack/observability/logging.py

Purpose
- Write one JSON object per log record to ``<log_dir>/alpack.jsonl`` without blocking
  the caller. Stdout stays reserved for guest output and command results.

Functional requirements
- Records are rendered in the emitting thread, so the correlation fields bound with
  ``correlation_scope`` (command, environment, operation) end up on the line.
- Secret-looking keys and inline ``NAME=value`` secrets are masked, as are bearer tokens
  and credentials embedded in mirror URLs, unless ``redact_secrets`` is false.
- A full queue drops records and counts them; a sandbox run never waits on the log.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import queue
import re
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

LOGGER_NAME: Final[str] = "alpack"
LOG_FILENAME: Final[str] = "alpack.jsonl"
REDACTED: Final[str] = "***REDACTED***"

_SENSITIVE_KEY: Final[re.Pattern[str]] = re.compile(
    r"(?i)(secret|token|passw(?:or)?d|passphrase|api[_-]?key|credential|cookie|authorization)"
)
_INLINE_SECRET: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(\w*(?:secret|token|passw(?:or)?d|api[_-]?key|authorization)\w*)(\s*[:=]\s*)[^\s,;]+"
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[\w.~+/-]+=*")
_URL_USERINFO: Final[re.Pattern[str]] = re.compile(r"(?i)\b(https?://)[^/\s@]+@")

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "alpack_log_correlation", default=()
)

_ACTIVE_LOCK = threading.Lock()
_ACTIVE: StructuredLoggingHandle | None = None
_ATEXIT_REGISTERED = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for queue-backed structured logging."""

    run_id: str
    base_log_dir: Path | str
    logger_name: str = LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = LOG_FILENAME
    log_to_stderr: bool = False
    max_bytes: int = 5_000_000
    backup_count: int = 3
    redactor: LogRedactor | None = None


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, run_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._run_id = run_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        event: dict[str, JSONValue] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": _as_text(self._redactor(record.getMessage())),
            "run_id": self._run_id,
        }
        event.update(get_correlation_context())

        fields: dict[str, JSONValue] = {
            key: _to_json(value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if fields:
            event["fields"] = self._redactor(fields)
        if record.exc_info:
            event["exception"] = _as_text(self._redactor(self.formatException(record.exc_info)))

        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Renders records before queueing them and drops them when the queue is full."""

    def __init__(
        self, log_queue: queue.Queue[logging.LogRecord], formatter: logging.Formatter
    ) -> None:
        super().__init__(log_queue)
        self.setFormatter(formatter)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class StructuredLoggingHandle:
    """The installed queue handler, its listener thread and the sinks it feeds."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    def shutdown(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.logger.removeHandler(self._queue_handler)
        # stop() drains everything queued before it returns.
        self._listener.stop()
        for sink in self._sinks:
            sink.close()


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str,
    verbose: bool = False,
) -> logging.Logger:
    """Configure structured logging from the ``[observability]`` config section.

    ``verbose`` lowers the level to DEBUG and mirrors records to stderr.
    """

    section = dict(observability_config or {})
    level = section.get("log_level", "INFO")
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=log_dir,
            level="DEBUG" if verbose else (level if isinstance(level, (int, str)) else "INFO"),
            log_to_stderr=verbose or bool(section.get("log_to_stderr", False)),
            redactor=redact if section.get("redact_secrets", True) else _keep,
        )
    )
    return handle.logger


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Install queue-backed JSON logging on ``config.logger_name``.

    Any previously installed setup is shut down first; one invocation has one log.
    """

    shutdown_logging()

    run_id = _non_blank(config.run_id, "run_id")
    logger_name = _non_blank(config.logger_name, "logger_name")
    if Path(config.log_filename).name != config.log_filename:
        raise ValueError("log_filename must not include path separators")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _log_level(config.level)

    log_dir = Path(config.base_log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / config.log_filename

    sinks: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max(1, config.max_bytes),
            backupCount=max(1, config.backup_count),
            encoding="utf-8",
        )
    ]
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler(sys.stderr))
    for sink in sinks:
        sink.setFormatter(logging.Formatter("%(message)s"))

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(
        log_queue, _JsonLineFormatter(run_id=run_id, redactor=config.redactor or redact)
    )
    listener = logging.handlers.QueueListener(log_queue, *sinks)
    listener.start()

    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.setLevel(level)
    logger.propagate = False
    logger.addHandler(queue_handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    global _ACTIVE, _ATEXIT_REGISTERED
    with _ACTIVE_LOCK:
        _ACTIVE = handle
        if not _ATEXIT_REGISTERED:
            atexit.register(shutdown_logging)
            _ATEXIT_REGISTERED = True
    return handle


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Flush and close ``handle``, or the active setup when none is given."""

    global _ACTIVE
    with _ACTIVE_LOCK:
        target = handle if handle is not None else _ACTIVE
        if target is _ACTIVE:
            _ACTIVE = None
    if target is not None:
        target.shutdown()


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``alpack`` or one of its children; records reach the active sinks."""

    if not name or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{name.removeprefix(LOGGER_NAME + '.')}")


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged inside the block; ``None`` unbinds."""

    context = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            context.pop(key, None)
            continue
        context[key] = _non_blank(value, f"correlation field {key!r}")
    token = _CORRELATION.set(tuple(context.items()))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def redact(value: JSONValue, *, key: str | None = None) -> JSONValue:
    """Mask secrets in a JSON-shaped value.

    A value stored under a secret-looking key is replaced outright. Strings keep their
    shape with only the secret part masked: ``token=***REDACTED***``,
    ``https://***REDACTED***@mirror.example/``.
    """

    if key is not None and _SENSITIVE_KEY.search(key):
        return REDACTED
    if isinstance(value, str):
        text = _URL_USERINFO.sub(rf"\1{REDACTED}@", value)
        text = _BEARER.sub(f"Bearer {REDACTED}", text)
        return _INLINE_SECRET.sub(rf"\1\2{REDACTED}", text)
    if isinstance(value, list):
        return [redact(item) for item in value]
    if isinstance(value, dict):
        return {name: redact(item, key=name) for name, item in value.items()}
    return value


def _keep(value: JSONValue) -> JSONValue:
    return value


def _non_blank(value: object, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} must be a non-empty string")
    return value.strip()


def _log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if not isinstance(parsed, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return parsed


def _as_text(value: JSONValue) -> str:
    return value if isinstance(value, str) else json.dumps(value, sort_keys=True)


def _to_json(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_json(item) for item in value]
    return str(value)


__all__ = [
    "JSONScalar",
    "JSONValue",
    "LOGGER_NAME",
    "LogRedactor",
    "LoggingConfig",
    "REDACTED",
    "StructuredLoggingHandle",
    "correlation_scope",
    "get_correlation_context",
    "get_logger",
    "redact",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
