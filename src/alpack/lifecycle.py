"""
alpack — environment lifecycle orchestration

File: src/alpack/lifecycle.py

Purpose
- Wire the fetcher, materializer, registry and execution engine into the
  user-facing operations: setup, run, remove, list and inspect.

Functional requirements
- Setup and removal of one environment are serialised by its lock file.
- Setup is a no-op for a ready environment unless forced; a forced setup
  replaces the root filesystem wholesale.
- Re-running setup on an existing name with a different channel or
  architecture is a naming conflict.
- A failed setup leaves the record pending so that it can simply be re-run.
"""

from __future__ import annotations

import contextlib
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from alpack.constants import DEFAULT_MIRROR_URL
from alpack.domain.models import (
    BackendKind,
    CachedArchive,
    Channel,
    Environment,
    ExecutionRequest,
)
from alpack.errors import NamingConflictError
from alpack.observability.logging import correlation_scope, get_logger
from alpack.registry.registry import EnvironmentRegistry, validate_environment_name
from alpack.rootfs.fetcher import ArchiveFetcher, ProgressCallback
from alpack.rootfs.materializer import ExtractProgress, RootfsMaterializer
from alpack.rootfs.mirror import check_architecture, host_architecture, repositories_text
from alpack.sandbox.engine import ExecutionOutcome, SandboxEngine
from alpack.utils.fs import temp_directory

if TYPE_CHECKING:
    import httpx

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SetupResult:
    environment: Environment
    changed: bool
    archive: CachedArchive | None = None


@dataclass(frozen=True, slots=True)
class EnvironmentInfo:
    environment: Environment
    populated: bool
    os_release: str | None = None


class EnvironmentManager:
    """Facade over the registry, rootfs pipeline and sandbox engine."""

    def __init__(
        self,
        *,
        base_dir: str | os.PathLike[str],
        cache_dir: str | os.PathLike[str],
        mirror_url: str = DEFAULT_MIRROR_URL,
        default_channel: Channel = Channel.STABLE,
        timeout_seconds: float = 60.0,
        default_backend: BackendKind = BackendKind.PROOT,
        backend_paths: Mapping[BackendKind, str | None] | None = None,
        bind_groups: bool = True,
        extra_binds: bool = True,
        client: httpx.Client | None = None,
        materializer: RootfsMaterializer | None = None,
        engine: SandboxEngine | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.registry = EnvironmentRegistry(base_dir)
        self.cache_dir = Path(cache_dir)
        self.mirror_url = mirror_url
        self.default_channel = default_channel
        self.timeout_seconds = timeout_seconds
        self.default_backend = default_backend
        self._client = client
        self._materializer = materializer or RootfsMaterializer()
        self._environ = environ
        self._engine = engine or SandboxEngine(
            self.registry,
            default_backend=default_backend,
            backend_paths=backend_paths,
            bind_groups=bind_groups,
            extra_binds=extra_binds,
            environ=environ,
        )

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        client: httpx.Client | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> EnvironmentManager:
        paths = config["paths"]
        mirror = config["mirror"]
        sandbox = config["sandbox"]
        return cls(
            base_dir=paths["base_dir"],
            cache_dir=paths["cache_dir"],
            mirror_url=mirror["url"],
            default_channel=Channel(mirror["default_channel"]),
            timeout_seconds=float(mirror["timeout_seconds"]),
            default_backend=BackendKind(sandbox["backend"]),
            backend_paths={
                BackendKind.PROOT: sandbox.get("proot_path"),
                BackendKind.BWRAP: sandbox.get("bwrap_path"),
            },
            bind_groups=bool(sandbox["bind_groups"]),
            extra_binds=bool(sandbox["extra_binds"]),
            client=client,
            environ=environ,
        )

    @property
    def engine(self) -> SandboxEngine:
        return self._engine

    def setup(
        self,
        name: str,
        *,
        channel: Channel | None = None,
        architecture: str | None = None,
        backend: BackendKind | None = None,
        force: bool = False,
        refresh: bool = False,
        no_cache: bool = False,
        download_progress: ProgressCallback | None = None,
        extract_progress: ExtractProgress | None = None,
    ) -> SetupResult:
        """Create or repair ``name`` so that it is ready to run commands."""

        validate_environment_name(name)
        with correlation_scope(environment=name, operation="setup"), self.registry.lock(name):
            RootfsMaterializer.cleanup_stale_siblings(self.registry.root_path_for(name))

            if self.registry.exists(name):
                environment = self.registry.lookup(name)
                _check_same_target(environment, channel, architecture)
                if (
                    environment.is_ready
                    and not force
                    and RootfsMaterializer.is_populated(environment.root_path)
                ):
                    logger.info("environment already set up", extra={"environment": name})
                    return SetupResult(environment=environment, changed=False)
                environment = self.registry.mark_pending(name)
            else:
                target_channel = channel or self.default_channel
                target_arch = architecture or host_architecture(self._environ)
                check_architecture(target_channel, target_arch)
                environment = self.registry.create(
                    name,
                    target_channel,
                    target_arch,
                    backend_kind=backend,
                    mirror_url=self.mirror_url,
                )

            with contextlib.ExitStack() as stack:
                cache_dir = self.cache_dir
                if no_cache:
                    cache_dir = stack.enter_context(temp_directory(prefix="alpack-cache-"))
                fetcher = stack.enter_context(
                    ArchiveFetcher(
                        cache_dir,
                        mirror_url=self.mirror_url,
                        timeout_seconds=self.timeout_seconds,
                        client=self._client,
                    )
                )
                archive = fetcher.fetch(
                    environment.channel,
                    environment.architecture,
                    refresh=refresh,
                    progress=download_progress,
                )
                self._materializer.materialize(
                    archive,
                    environment.root_path,
                    force=True,
                    repositories=repositories_text(environment.channel, self.mirror_url),
                    progress=extract_progress,
                )

            environment = self.registry.mark_ready(
                name,
                release_version=archive.version,
                archive_checksum=archive.checksum,
                mirror_url=self.mirror_url,
            )
            logger.info(
                "environment ready",
                extra={"environment": name, "version": archive.version},
            )
            return SetupResult(environment=environment, changed=True, archive=archive)

    def run(self, request: ExecutionRequest) -> ExecutionOutcome:
        with correlation_scope(environment=request.environment, operation="run"):
            return self._engine.run(request)

    def remove(self, name: str) -> Environment:
        validate_environment_name(name)
        with correlation_scope(environment=name, operation="remove"), self.registry.lock(name):
            RootfsMaterializer.cleanup_stale_siblings(self.registry.root_path_for(name))
            return self.registry.remove(name)

    def list_environments(self) -> list[Environment]:
        return self.registry.list()

    def inspect(self, name: str) -> EnvironmentInfo:
        environment = self.registry.lookup(name)
        root = Path(environment.root_path)
        return EnvironmentInfo(
            environment=environment,
            populated=RootfsMaterializer.is_populated(root),
            os_release=read_os_release(root),
        )


def read_os_release(root: str | os.PathLike[str]) -> str | None:
    """``PRETTY_NAME`` from the guest's ``/etc/os-release``, if present."""

    path = Path(root) / "etc" / "os-release"
    try:
        text = path.read_text(encoding="utf-8")
    except (FileNotFoundError, NotADirectoryError, PermissionError):
        return None
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() == "PRETTY_NAME":
            return value.strip().strip('"') or None
    return None


def _check_same_target(
    environment: Environment, channel: Channel | None, architecture: str | None
) -> None:
    if channel is not None and channel != environment.channel:
        raise NamingConflictError(
            f"environment {environment.name!r} already exists on channel "
            f"{environment.channel.value}; remove it first to switch to {channel.value}",
            subject=environment.name,
        )
    if architecture is not None and architecture != environment.architecture:
        raise NamingConflictError(
            f"environment {environment.name!r} already exists for {environment.architecture}; "
            f"remove it first to switch to {architecture}",
            subject=environment.name,
        )


__all__ = ["EnvironmentInfo", "EnvironmentManager", "SetupResult", "read_os_release"]
