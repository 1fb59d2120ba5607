"""Base image acquisition and root filesystem materialization."""

from alpack.rootfs.fetcher import ArchiveFetcher, ProgressCallback
from alpack.rootfs.materializer import MaterializeResult, RootfsMaterializer, prepare_guest
from alpack.rootfs.mirror import (
    ReleaseEntry,
    check_architecture,
    host_architecture,
    parse_releases_index,
    release_url,
    releases_index_url,
    repositories_text,
)

__all__ = [
    "ArchiveFetcher",
    "MaterializeResult",
    "ProgressCallback",
    "ReleaseEntry",
    "RootfsMaterializer",
    "check_architecture",
    "host_architecture",
    "parse_releases_index",
    "prepare_guest",
    "release_url",
    "releases_index_url",
    "repositories_text",
]
