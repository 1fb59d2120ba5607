"""Structured logging for alpack operations."""

from alpack.observability.logging import (
    LOGGER_NAME,
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    get_logger,
    redact,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LOGGER_NAME",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "get_logger",
    "redact",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
