"""
Blocking entry points. Each call runs the async pipeline to completion on a
private event loop, so it must not be used from inside a running loop.
"""

import asyncio
from pathlib import Path
from typing import Optional, Union

from pg_archive.core.pipeline import ArchivePipeline, PlatformLike, SpecifierLike
from pg_archive.models.config import ArchiveConfig
from pg_archive.models.release import (
    InstallResult,
    ReleaseDescriptor,
    ReleaseIndex,
    ResolvedArchive,
)
from pg_archive.models.version import LATEST
from pg_archive.storage.extractor import extract
from pg_archive.utils.deadline import Deadline

__all__ = ["extract", "fetch_index", "get_archive", "install", "resolve"]


def fetch_index(
    config: Optional[ArchiveConfig] = None, deadline: Optional[Deadline] = None
) -> ReleaseIndex:
    return asyncio.run(ArchivePipeline(config).fetch_index(deadline))


def resolve(
    specifier: SpecifierLike = LATEST,
    config: Optional[ArchiveConfig] = None,
    deadline: Optional[Deadline] = None,
) -> ReleaseDescriptor:
    return asyncio.run(ArchivePipeline(config).resolve(specifier, deadline))


def get_archive(
    specifier: SpecifierLike = LATEST,
    platform: PlatformLike = None,
    config: Optional[ArchiveConfig] = None,
    deadline: Optional[Deadline] = None,
) -> ResolvedArchive:
    """Blocking variant of :func:`pg_archive.get_archive`."""
    return asyncio.run(ArchivePipeline(config).get_archive(specifier, platform, deadline))


def install(
    specifier: SpecifierLike,
    destination: Union[Path, str],
    platform: PlatformLike = None,
    config: Optional[ArchiveConfig] = None,
    deadline: Optional[Deadline] = None,
) -> InstallResult:
    """Blocking variant of :func:`pg_archive.install`."""
    return asyncio.run(
        ArchivePipeline(config).install(specifier, destination, platform, deadline)
    )
