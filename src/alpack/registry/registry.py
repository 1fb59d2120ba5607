"""
alpack — environment registry

File: src/alpack/registry/registry.py

Purpose
- Persist the set of named environments as one JSON record per name under
  ``<base_dir>/.registry`` and hand out per-environment advisory locks.

Functional requirements
- Names are unique; creating an existing name fails and leaves it untouched.
- Root paths are allocated deterministically as ``<base_dir>/<name>``.
- Removal deletes the root filesystem first and the record last, so an
  interrupted removal can be re-run.
- Record writes are atomic (temp file + rename).

Non-functional requirements
- No in-process state; every call reads the filesystem, so separate CLI
  invocations observe each other's changes.
"""

from __future__ import annotations

import dataclasses
import os
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Final

from alpack.constants import LOCKS_DIR_NAME, REGISTRY_DIR_NAME
from alpack.domain.models import (
    ENVIRONMENT_NAME_PATTERN,
    BackendKind,
    Channel,
    Environment,
    EnvironmentState,
    utc_now,
)
from alpack.errors import NamingConflictError, NotFoundError, ValidationError
from alpack.observability.logging import get_logger
from alpack.rootfs.mirror import check_architecture
from alpack.utils.fs import atomic_write, file_lock, safe_delete

if TYPE_CHECKING:
    from collections.abc import Iterator

_RECORD_SUFFIX: Final[str] = ".json"

logger = get_logger(__name__)


def validate_environment_name(name: str) -> str:
    """Return ``name`` if it is usable as a registry key and directory name."""

    if not isinstance(name, str) or not ENVIRONMENT_NAME_PATTERN.fullmatch(name):
        raise ValidationError(
            f"invalid environment name {name!r}: use 1-64 letters, digits, '.', '_' or '-', "
            "starting with a letter or digit",
            subject=str(name),
        )
    return name


class EnvironmentRegistry:
    """Filesystem-backed catalogue of environments."""

    def __init__(self, base_dir: str | os.PathLike[str]) -> None:
        self.base_dir = Path(base_dir)

    @property
    def records_dir(self) -> Path:
        return self.base_dir / REGISTRY_DIR_NAME

    @property
    def locks_dir(self) -> Path:
        return self.base_dir / LOCKS_DIR_NAME

    def root_path_for(self, name: str) -> Path:
        return self.base_dir / validate_environment_name(name)

    def exists(self, name: str) -> bool:
        return self._record_path(name).is_file()

    @contextmanager
    def lock(self, name: str) -> Iterator[Path]:
        """Exclusive lock serialising setup and removal of one environment."""

        lock_path = self.locks_dir / f"{validate_environment_name(name)}.lock"
        with file_lock(lock_path):
            yield lock_path

    def create(
        self,
        name: str,
        channel: Channel,
        architecture: str,
        *,
        backend_kind: BackendKind | None = None,
        mirror_url: str | None = None,
    ) -> Environment:
        """Register ``name`` in the pending state. Callers hold ``lock(name)``."""

        validate_environment_name(name)
        check_architecture(channel, architecture)
        if self.exists(name):
            raise NamingConflictError(f"environment {name!r} already exists", subject=name)

        environment = Environment(
            name=name,
            root_path=str(self.root_path_for(name).absolute()),
            channel=channel,
            architecture=architecture,
            created_at=utc_now(),
            backend_kind=backend_kind,
            state=EnvironmentState.PENDING,
            mirror_url=mirror_url,
        )
        self._write(environment)
        logger.info(
            "environment registered",
            extra={"environment": name, "channel": channel.value, "arch": architecture},
        )
        return environment

    def lookup(self, name: str) -> Environment:
        record_path = self._record_path(name)
        try:
            raw = record_path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFoundError(f"no environment named {name!r}", subject=name) from exc
        try:
            return Environment.from_json(raw)
        except ValueError as exc:
            raise ValidationError(
                f"registry record for {name!r} is corrupt: {exc}", subject=str(record_path)
            ) from exc

    def list(self) -> list[Environment]:
        if not self.records_dir.is_dir():
            return []
        environments: list[Environment] = []
        for record_path in sorted(self.records_dir.glob(f"*{_RECORD_SUFFIX}")):
            name = record_path.name[: -len(_RECORD_SUFFIX)]
            if not ENVIRONMENT_NAME_PATTERN.fullmatch(name):
                continue
            try:
                environments.append(self.lookup(name))
            except (NotFoundError, ValidationError) as exc:
                logger.warning(
                    "skipping registry record",
                    extra={"path": record_path, "error": str(exc)},
                )
        return sorted(environments, key=lambda item: item.name)

    def mark_ready(
        self,
        name: str,
        *,
        release_version: str,
        archive_checksum: str,
        mirror_url: str | None = None,
    ) -> Environment:
        current = self.lookup(name)
        updated = dataclasses.replace(
            current,
            state=EnvironmentState.READY,
            release_version=release_version,
            archive_checksum=archive_checksum,
            mirror_url=mirror_url if mirror_url is not None else current.mirror_url,
        )
        self._write(updated)
        return updated

    def mark_pending(self, name: str) -> Environment:
        current = self.lookup(name)
        if current.state is EnvironmentState.PENDING:
            return current
        updated = dataclasses.replace(current, state=EnvironmentState.PENDING)
        self._write(updated)
        return updated

    def remove(self, name: str) -> Environment:
        """Delete the environment's files, then its record. Callers hold ``lock(name)``."""

        environment = self.lookup(name)
        root = Path(environment.root_path)
        if root.exists() or root.is_symlink():
            try:
                safe_delete(root, self.base_dir)
            except ValueError as exc:
                raise ValidationError(str(exc), subject=str(root)) from exc
        self._record_path(name).unlink(missing_ok=True)
        logger.info("environment removed", extra={"environment": name})
        return environment

    def _record_path(self, name: str) -> Path:
        return self.records_dir / f"{validate_environment_name(name)}{_RECORD_SUFFIX}"

    def _write(self, environment: Environment) -> None:
        self.records_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(self._record_path(environment.name), environment.to_json())


__all__ = ["EnvironmentRegistry", "validate_environment_name"]
