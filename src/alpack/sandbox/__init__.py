"""Bind translation, backend drivers and the execution engine."""

from alpack.sandbox.binds import (
    DefaultBind,
    deduplicate,
    default_binds,
    normalize_guest_path,
    parse_bind_spec,
    translate,
)
from alpack.sandbox.drivers import (
    BwrapDriver,
    ProcessDriver,
    ProotDriver,
    driver_class,
    driver_for,
    probe_version,
    register_driver,
    resolve_backend_binary,
)
from alpack.sandbox.engine import (
    ExecutionOutcome,
    ExecutionState,
    PreparedInvocation,
    SandboxEngine,
    exit_status,
    guest_command,
    guest_environment,
    guest_working_dir,
)

__all__ = [
    "BwrapDriver",
    "DefaultBind",
    "ExecutionOutcome",
    "ExecutionState",
    "PreparedInvocation",
    "ProcessDriver",
    "ProotDriver",
    "SandboxEngine",
    "deduplicate",
    "default_binds",
    "driver_class",
    "driver_for",
    "exit_status",
    "guest_command",
    "guest_environment",
    "guest_working_dir",
    "normalize_guest_path",
    "parse_bind_spec",
    "probe_version",
    "register_driver",
    "resolve_backend_binary",
    "translate",
]
