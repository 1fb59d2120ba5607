"""
alpack — archive fetcher

File: src/alpack/rootfs/fetcher.py

Purpose
- Obtain a verified Alpine minirootfs tarball for a channel and architecture,
  reusing the local cache whenever its recorded SHA-256 still matches.

Functional requirements
- A cache hit performs no network traffic.
- Downloads stream into a temporary file in the cache directory and are only
  renamed into place after the digest published by the mirror matches.
- A mismatching download or cached file is deleted and never handed out.
- Transport failures surface as retryable ``NetworkError``; the fetcher never retries.

Non-functional requirements
- The HTTP client is injectable so tests can use ``httpx.MockTransport``.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Final

import httpx

from alpack.constants import CACHE_RECORD_SCHEMA_VERSION, DEFAULT_MIRROR_URL
from alpack.domain.models import CachedArchive, Channel, utc_now
from alpack.errors import IntegrityError, NetworkError
from alpack.observability.logging import get_logger
from alpack.rootfs.mirror import (
    ReleaseEntry,
    check_architecture,
    parse_releases_index,
    release_url,
    releases_index_url,
)
from alpack.utils.fs import atomic_write, fsync_directory
from alpack.utils.hashing import sha256_file

if TYPE_CHECKING:
    from types import TracebackType

ProgressCallback = Callable[[int, int | None], None]

_RECORD_NAME: Final[str] = "archive.json"
_DOWNLOAD_CHUNK_BYTES: Final[int] = 64 * 1024

logger = get_logger(__name__)


class ArchiveFetcher:
    """Download and cache minirootfs archives from an Alpine mirror."""

    def __init__(
        self,
        cache_dir: str | os.PathLike[str],
        *,
        mirror_url: str = DEFAULT_MIRROR_URL,
        timeout_seconds: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.mirror_url = mirror_url if mirror_url.endswith("/") else mirror_url + "/"
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
        )

    def __enter__(self) -> ArchiveFetcher:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def entry_dir(self, channel: Channel, architecture: str) -> Path:
        return self.cache_dir / channel.value / architecture

    def fetch(
        self,
        channel: Channel,
        architecture: str,
        *,
        refresh: bool = False,
        progress: ProgressCallback | None = None,
    ) -> CachedArchive:
        """Return a verified archive, downloading it when the cache cannot serve it."""

        check_architecture(channel, architecture)
        # A refresh keeps the old entry until its replacement is verified and in place.
        if not refresh:
            cached = self.cached(channel, architecture)
            if cached is not None:
                logger.debug("archive cache hit", extra={"path": cached.local_path})
                return cached

        base_url = release_url(channel, architecture, self.mirror_url)
        release = self._fetch_release(channel, architecture)
        source_url = base_url + release.file

        entry_dir = self.entry_dir(channel, architecture)
        entry_dir.mkdir(parents=True, exist_ok=True)
        target = entry_dir / release.file

        logger.info(
            "downloading rootfs archive",
            extra={"url": source_url, "version": release.version, "sha256": release.sha256},
        )
        self._download_verified(source_url, target, release, progress)

        archive = CachedArchive(
            channel=channel,
            architecture=architecture,
            source_url=source_url,
            local_path=str(target.resolve()),
            checksum=release.sha256,
            version=release.version,
            fetched_at=utc_now(),
        )
        self._write_record(archive)
        self._prune_stale_files(entry_dir, keep=target.name)
        return archive

    def cached(self, channel: Channel, architecture: str) -> CachedArchive | None:
        """Return the cached archive if its file still matches the recorded digest."""

        record_path = self.entry_dir(channel, architecture) / _RECORD_NAME
        if not record_path.is_file():
            return None

        try:
            payload = json.loads(record_path.read_text(encoding="utf-8"))
            payload.pop("schema_version", None)
            archive = CachedArchive.from_dict(payload)
        except (OSError, ValueError, AttributeError) as exc:
            logger.warning(
                "discarding unreadable cache record",
                extra={"path": record_path, "error": str(exc)},
            )
            self.invalidate(channel, architecture)
            return None

        local = Path(archive.local_path)
        if not local.is_file() or sha256_file(local) != archive.checksum:
            logger.warning(
                "cached archive failed verification; removing it",
                extra={"path": local, "expected_sha256": archive.checksum},
            )
            self.invalidate(channel, architecture)
            return None
        return archive

    def invalidate(self, channel: Channel, architecture: str) -> None:
        """Delete the cache record and archives for one channel/arch pair.

        In-flight ``.<file>.*.part`` downloads are left alone.
        """

        entry_dir = self.entry_dir(channel, architecture)
        if not entry_dir.is_dir():
            return
        for item in entry_dir.iterdir():
            if item.name.startswith("."):
                continue
            if item.is_file() or item.is_symlink():
                item.unlink(missing_ok=True)

    def _fetch_release(self, channel: Channel, architecture: str) -> ReleaseEntry:
        url = releases_index_url(channel, architecture, self.mirror_url)
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise NetworkError(f"timed out fetching {url}", subject=url) from exc
        except httpx.HTTPStatusError as exc:
            raise NetworkError(
                f"mirror answered {exc.response.status_code} for {url}", subject=url
            ) from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"cannot reach mirror for {url}: {exc}", subject=url) from exc
        return parse_releases_index(response.text, source=url)

    def _download_verified(
        self,
        url: str,
        target: Path,
        release: ReleaseEntry,
        progress: ProgressCallback | None,
    ) -> None:
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".part", dir=str(target.parent)
        )
        temp_path = Path(temp_name)
        digest = hashlib.sha256()

        try:
            with os.fdopen(fd, "wb") as handle:

                def sink(chunk: bytes) -> None:
                    handle.write(chunk)
                    digest.update(chunk)

                self._stream_into(url, sink, release.size, progress)
                handle.flush()
                os.fsync(handle.fileno())

            actual = digest.hexdigest()
            if actual != release.sha256:
                raise IntegrityError(
                    f"checksum mismatch for {url}: expected {release.sha256}, got {actual}",
                    subject=url,
                )
            os.replace(temp_path, target)
            fsync_directory(target.parent)
        except BaseException:
            with contextlib.suppress(OSError):
                temp_path.unlink(missing_ok=True)
            raise

    def _stream_into(
        self,
        url: str,
        sink: Callable[[bytes], None],
        expected_size: int | None,
        progress: ProgressCallback | None,
    ) -> None:
        try:
            with self._client.stream("GET", url) as response:
                response.raise_for_status()
                total = _content_length(response) or expected_size
                done = 0
                if progress is not None:
                    progress(done, total)
                for chunk in response.iter_bytes(_DOWNLOAD_CHUNK_BYTES):
                    sink(chunk)
                    done += len(chunk)
                    if progress is not None:
                        progress(done, total)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"timed out downloading {url}", subject=url) from exc
        except httpx.HTTPStatusError as exc:
            raise NetworkError(
                f"mirror answered {exc.response.status_code} for {url}", subject=url
            ) from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"download of {url} failed: {exc}", subject=url) from exc

    def _write_record(self, archive: CachedArchive) -> None:
        payload = {"schema_version": CACHE_RECORD_SCHEMA_VERSION, **archive.to_dict()}
        record_path = self.entry_dir(archive.channel, archive.architecture) / _RECORD_NAME
        atomic_write(record_path, json.dumps(payload, sort_keys=True, indent=2) + "\n")

    @staticmethod
    def _prune_stale_files(entry_dir: Path, *, keep: str) -> None:
        for item in entry_dir.iterdir():
            if item.name in {keep, _RECORD_NAME} or not item.is_file():
                continue
            if item.name.startswith("."):
                continue
            logger.debug("removing superseded archive", extra={"path": item})
            item.unlink(missing_ok=True)


def _content_length(response: httpx.Response) -> int | None:
    raw = response.headers.get("content-length")
    if raw is None or not raw.isdigit():
        return None
    return int(raw)


__all__ = ["ArchiveFetcher", "ProgressCallback"]
