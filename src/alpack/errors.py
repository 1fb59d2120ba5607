"""
alpack — error taxonomy

File: src/alpack/errors.py

Purpose
- Give every failure that crosses a module boundary a stable kind and the
  offending subject (environment name, path, URL, or backend binary).

Functional requirements
- ``NetworkError`` is the only retryable kind; callers decide whether to retry.
- A guest command exiting non-zero is not an error and never raises.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INTEGRITY = "integrity"
    NETWORK = "network"
    NAMING_CONFLICT = "naming-conflict"
    NOT_FOUND = "not-found"
    VALIDATION = "validation"
    BACKEND_SPAWN = "backend-spawn"


class AlpackError(RuntimeError):
    """Base class for failures raised by alpack operations."""

    kind: ErrorKind = ErrorKind.VALIDATION
    retryable: bool = False

    def __init__(self, message: str, *, subject: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.subject = subject

    def __str__(self) -> str:
        return self.message


class IntegrityError(AlpackError):
    """Checksum mismatch or an archive member that cannot be extracted safely."""

    kind = ErrorKind.INTEGRITY


class NetworkError(AlpackError):
    """Mirror unreachable, timed out, or answered with a non-success status."""

    kind = ErrorKind.NETWORK
    retryable = True


class NamingConflictError(AlpackError):
    kind = ErrorKind.NAMING_CONFLICT


class NotFoundError(AlpackError):
    kind = ErrorKind.NOT_FOUND


class EnvironmentNotReadyError(NotFoundError):
    """The environment record exists but its root filesystem is not usable."""


class ValidationError(AlpackError):
    kind = ErrorKind.VALIDATION


class BackendSpawnError(AlpackError):
    """The isolation backend binary is missing or could not be started."""

    kind = ErrorKind.BACKEND_SPAWN


__all__ = [
    "AlpackError",
    "BackendSpawnError",
    "EnvironmentNotReadyError",
    "ErrorKind",
    "IntegrityError",
    "NamingConflictError",
    "NetworkError",
    "NotFoundError",
    "ValidationError",
]
