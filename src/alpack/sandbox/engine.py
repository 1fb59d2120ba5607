"""
alpack — sandbox execution engine

File: src/alpack/sandbox/engine.py

Purpose
- Run one command inside a registered environment through an isolation
  backend and report the guest's exit status.

Functional requirements
- ``prepare`` resolves everything that can fail before a process exists:
  registry lookup, readiness, bind translation, backend binary and argv.
- ``execute`` spawns the backend in its own process group, forwards
  SIGINT/SIGTERM/SIGHUP/SIGQUIT to that group and waits for it to exit.
- The guest exit code is returned unchanged; death by signal N maps to 128+N.
- With an interactive terminal the child group becomes the terminal's
  foreground group, and the terminal is reclaimed once the child exits.

Non-functional requirements
- No internal timeout; a long-running guest runs until it exits.
- The engine holds no lock; concurrent runs of one environment are allowed.
"""

from __future__ import annotations

import contextlib
import os
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Final

from alpack.constants import GUEST_PATH, GUEST_SHELL
from alpack.domain.models import (
    BackendKind,
    BindMount,
    CommandForm,
    Environment,
    ExecutionRequest,
)
from alpack.errors import BackendSpawnError, EnvironmentNotReadyError
from alpack.observability.logging import correlation_scope, get_logger
from alpack.rootfs.materializer import RootfsMaterializer
from alpack.sandbox.binds import translate
from alpack.sandbox.drivers import ProcessDriver, driver_for, resolve_backend_binary

if TYPE_CHECKING:
    from alpack.registry.registry import EnvironmentRegistry

DriverFactory = Callable[[BackendKind, str], ProcessDriver]
BinaryResolver = Callable[..., str]

FORWARDED_SIGNALS: Final[tuple[signal.Signals, ...]] = (
    signal.SIGINT,
    signal.SIGTERM,
    signal.SIGHUP,
    signal.SIGQUIT,
)

logger = get_logger(__name__)


class ExecutionState(StrEnum):
    PREPARING = "preparing"
    SPAWNED = "spawned"
    RUNNING = "running"
    TERMINATED = "terminated"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PreparedInvocation:
    environment: Environment
    backend: BackendKind
    argv: tuple[str, ...]
    env: Mapping[str, str]
    binds: tuple[BindMount, ...]
    working_dir: str
    command: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    exit_code: int
    state: ExecutionState = ExecutionState.TERMINATED
    signal_number: int | None = None
    duration_seconds: float = 0.0
    pid: int | None = None


@dataclass(slots=True)
class _Transitions:
    history: list[ExecutionState] = field(default_factory=list)

    def enter(self, state: ExecutionState) -> None:
        self.history.append(state)
        logger.debug("execution state", extra={"state": state.value})

    @property
    def current(self) -> ExecutionState | None:
        return self.history[-1] if self.history else None


class SandboxEngine:
    """Prepare and execute guest commands for registered environments."""

    def __init__(
        self,
        registry: EnvironmentRegistry,
        *,
        default_backend: BackendKind = BackendKind.PROOT,
        backend_paths: Mapping[BackendKind, str | None] | None = None,
        bind_groups: bool = True,
        extra_binds: bool = True,
        environ: Mapping[str, str] | None = None,
        cwd: str | None = None,
        driver_factory: DriverFactory = driver_for,
        binary_resolver: BinaryResolver = resolve_backend_binary,
        foreground_tty: bool | None = None,
        bind_exists: Callable[[str], bool] = os.path.exists,
    ) -> None:
        self._registry = registry
        self._default_backend = default_backend
        self._backend_paths = dict(backend_paths or {})
        self._bind_groups = bind_groups
        self._extra_binds = extra_binds
        self._environ = environ
        self._cwd = cwd
        self._driver_factory = driver_factory
        self._binary_resolver = binary_resolver
        self._foreground_tty = foreground_tty
        self._bind_exists = bind_exists
        self._transitions = _Transitions()

    @property
    def state(self) -> ExecutionState | None:
        return self._transitions.current

    @property
    def state_history(self) -> tuple[ExecutionState, ...]:
        return tuple(self._transitions.history)

    def run(self, request: ExecutionRequest) -> ExecutionOutcome:
        return self.execute(self.prepare(request))

    def prepare(self, request: ExecutionRequest) -> PreparedInvocation:
        """Resolve a request into a ready-to-spawn invocation; spawns nothing."""

        self._transitions = _Transitions()
        self._transitions.enter(ExecutionState.PREPARING)
        try:
            return self._prepare(request)
        except BaseException:
            self._transitions.enter(ExecutionState.FAILED)
            raise

    def execute(self, prepared: PreparedInvocation) -> ExecutionOutcome:
        with correlation_scope(environment=prepared.environment.name):
            try:
                return self._execute(prepared)
            except BaseException:
                self._transitions.enter(ExecutionState.FAILED)
                raise

    def _prepare(self, request: ExecutionRequest) -> PreparedInvocation:
        environment = self._registry.lookup(request.environment)
        root = Path(environment.root_path)
        if not environment.is_ready:
            raise EnvironmentNotReadyError(
                f"environment {environment.name!r} is not set up; run 'alpack setup' first",
                subject=environment.name,
            )
        if not RootfsMaterializer.is_populated(root):
            raise EnvironmentNotReadyError(
                f"root filesystem of {environment.name!r} is missing or empty: {root}",
                subject=str(root),
            )

        host_env = dict(os.environ if self._environ is None else self._environ)
        cwd = self._cwd if self._cwd is not None else os.getcwd()
        binds = translate(
            request.binds,
            home=host_env.get("HOME"),
            bind_groups=request.bind_groups and self._bind_groups,
            extra_binds=request.extra_binds and self._extra_binds,
            suppress=request.suppress_defaults,
            cwd=cwd,
            exists=self._bind_exists,
        )

        backend = request.backend or environment.backend_kind or self._default_backend
        executable = self._binary_resolver(
            backend, self._backend_paths.get(backend), environ=host_env
        )
        driver = self._driver_factory(backend, executable)

        working_dir = request.working_dir or guest_working_dir(binds, cwd)
        command = guest_command(request.command_form, request.payload)
        argv = driver.build_argv(
            root_path=str(root),
            binds=binds,
            working_dir=working_dir,
            as_root=request.as_root,
            raw_args=request.raw_backend_args,
            command=command,
        )
        env = guest_environment(host_env, as_root=request.as_root, overrides=request.env_overrides)

        logger.info(
            "prepared sandbox invocation",
            extra={
                "environment": environment.name,
                "backend": backend.value,
                "binds": len(binds),
                "working_dir": working_dir,
            },
        )
        return PreparedInvocation(
            environment=environment,
            backend=backend,
            argv=tuple(argv),
            env=env,
            binds=tuple(binds),
            working_dir=working_dir,
            command=tuple(command),
        )

    def _execute(self, prepared: PreparedInvocation) -> ExecutionOutcome:
        tty_fd = self._terminal_fd()
        started = time.monotonic()
        try:
            process = subprocess.Popen(
                list(prepared.argv),
                env=dict(prepared.env),
                process_group=0,
                preexec_fn=None if tty_fd is None else _claim_terminal(tty_fd),
            )
        except OSError as exc:
            raise BackendSpawnError(
                f"cannot start {prepared.backend.value} ({prepared.argv[0]}): {exc}",
                subject=prepared.argv[0],
            ) from exc
        self._transitions.enter(ExecutionState.SPAWNED)
        logger.info(
            "sandbox process spawned",
            extra={"pid": process.pid, "backend": prepared.backend.value},
        )

        with _forward_signals(process.pid), _foreground(tty_fd, process.pid):
            self._transitions.enter(ExecutionState.RUNNING)
            returncode = process.wait()

        exit_code, signal_number = exit_status(returncode)
        self._transitions.enter(ExecutionState.TERMINATED)
        duration = time.monotonic() - started
        logger.info(
            "sandbox process exited",
            extra={
                "pid": process.pid,
                "exit_code": exit_code,
                "signal": signal_number,
                "duration_seconds": round(duration, 3),
            },
        )
        return ExecutionOutcome(
            exit_code=exit_code,
            signal_number=signal_number,
            duration_seconds=duration,
            pid=process.pid,
        )

    def _terminal_fd(self) -> int | None:
        interactive = self._foreground_tty
        if interactive is None:
            interactive = _stdin_is_tty()
        if not interactive:
            return None
        return sys.stdin.fileno()


def guest_command(form: CommandForm, payload: Sequence[str]) -> list[str]:
    if form == CommandForm.SHELL:
        return [GUEST_SHELL, "-c", payload[0]]
    if not payload:
        return [GUEST_SHELL]
    return list(payload)


def guest_environment(
    host_env: Mapping[str, str],
    *,
    as_root: bool,
    overrides: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Host variables, then the guest baseline, then caller overrides."""

    env = dict(host_env)
    env["PATH"] = GUEST_PATH
    env["SHELL"] = GUEST_SHELL
    env["PS1"] = "# " if as_root else "$ "
    if as_root:
        env["USER"] = "root"
        env["LOGNAME"] = "root"
    env.update(overrides or {})
    return env


def guest_working_dir(binds: Sequence[BindMount], cwd: str) -> str:
    """The host cwd when an identity bind exposes it at the same path, else '/'."""

    for bind in reversed(binds):
        if bind.host_path != bind.guest_path:
            continue
        if cwd == bind.host_path or cwd.startswith(bind.host_path.rstrip("/") + "/"):
            return cwd
    return "/"


def exit_status(returncode: int) -> tuple[int, int | None]:
    if returncode < 0:
        return 128 - returncode, -returncode
    return returncode, None


@contextlib.contextmanager
def _forward_signals(pgid: int) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def forward(signum: int, _frame: object) -> None:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(pgid, signum)

    previous = {signum: signal.signal(signum, forward) for signum in FORWARDED_SIGNALS}
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


@contextlib.contextmanager
def _foreground(tty_fd: int | None, pgid: int) -> Iterator[None]:
    if tty_fd is None:
        yield
        return

    own_pgid = os.getpgrp()
    with contextlib.suppress(OSError):
        _set_foreground(tty_fd, pgid)
    try:
        yield
    finally:
        with contextlib.suppress(OSError):
            _set_foreground(tty_fd, own_pgid)


def _set_foreground(tty_fd: int, pgid: int) -> None:
    # A background group calling tcsetpgrp receives SIGTTOU.
    previous = signal.signal(signal.SIGTTOU, signal.SIG_IGN)
    try:
        os.tcsetpgrp(tty_fd, pgid)
    finally:
        signal.signal(signal.SIGTTOU, previous)


def _claim_terminal(tty_fd: int) -> Callable[[], None]:
    def preexec() -> None:
        _set_foreground(tty_fd, os.getpgrp())

    return preexec


def _stdin_is_tty() -> bool:
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


__all__ = [
    "FORWARDED_SIGNALS",
    "ExecutionOutcome",
    "ExecutionState",
    "PreparedInvocation",
    "SandboxEngine",
    "exit_status",
    "guest_command",
    "guest_environment",
    "guest_working_dir",
]
