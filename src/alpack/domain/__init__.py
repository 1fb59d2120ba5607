"""Domain records shared by the registry, fetcher and sandbox engine."""

from alpack.domain.models import (
    ENVIRONMENT_NAME_PATTERN,
    BackendKind,
    BindMode,
    BindMount,
    BindOrigin,
    CachedArchive,
    Channel,
    CommandForm,
    Environment,
    EnvironmentState,
    ExecutionRequest,
    utc_now,
)

__all__ = [
    "ENVIRONMENT_NAME_PATTERN",
    "BackendKind",
    "BindMode",
    "BindMount",
    "BindOrigin",
    "CachedArchive",
    "Channel",
    "CommandForm",
    "Environment",
    "EnvironmentState",
    "ExecutionRequest",
    "utc_now",
]
