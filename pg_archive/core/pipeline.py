"""
The main orchestrator: resolve a version, locate the asset, consult the cache,
download and verify on a miss, and extract.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

import aiohttp

from pg_archive.api.client import ReleaseIndexClient
from pg_archive.models.config import ArchiveConfig
from pg_archive.models.platform import PlatformTriple
from pg_archive.models.release import (
    AssetDescriptor,
    InstallResult,
    ReleaseDescriptor,
    ReleaseIndex,
    ResolvedArchive,
)
from pg_archive.models.version import LATEST, VersionSpecifier, parse_specifier
from pg_archive.storage.cache import ArchiveCache
from pg_archive.storage.extractor import extract
from pg_archive.transfer.downloader import Downloader
from pg_archive.utils.deadline import Deadline

from .locator import locate
from .resolver import resolve

log = logging.getLogger(__name__)

SpecifierLike = Union[VersionSpecifier, str]
PlatformLike = Union[PlatformTriple, str, None]


def as_specifier(specifier: SpecifierLike) -> VersionSpecifier:
    return parse_specifier(specifier) if isinstance(specifier, str) else specifier


def as_platform(platform: PlatformLike) -> Optional[PlatformTriple]:
    if platform is None or isinstance(platform, PlatformTriple):
        return platform
    return PlatformTriple.parse(platform)


class ArchivePipeline:
    """
    Runs one resolve/download/extract flow per call. Nothing is shared between
    calls except the cache.
    """

    def __init__(
        self,
        config: Optional[ArchiveConfig] = None,
        cache: Optional[ArchiveCache] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            config: Pipeline configuration; defaults are used when omitted.
            cache: Cache to consult. When omitted one is created from
                ``config.cache_dir`` if ``config.use_cache`` is set.
            session: Optional externally-owned aiohttp session.
        """
        self.config = config or ArchiveConfig()
        if cache is None and self.config.use_cache:
            cache = ArchiveCache(self.config.cache_dir)
        self.cache = cache
        self._session = session

    async def fetch_index(self, deadline: Optional[Deadline] = None) -> ReleaseIndex:
        """Fetches the release index from the registry."""
        async with ReleaseIndexClient(self.config, session=self._session) as client:
            return await client.fetch_releases(deadline)

    async def resolve(
        self, specifier: SpecifierLike = LATEST, deadline: Optional[Deadline] = None
    ) -> ReleaseDescriptor:
        """Resolves ``specifier`` against a freshly fetched index."""
        index = await self.fetch_index(deadline)
        return resolve(as_specifier(specifier), index, self.config.include_prerelease)

    async def resolve_digest(
        self, asset: AssetDescriptor, deadline: Optional[Deadline] = None
    ) -> AssetDescriptor:
        """Fills in the expected digest of ``asset`` from its sidecar file, if any."""
        async with ReleaseIndexClient(self.config, session=self._session) as client:
            return await client.resolve_expected_hash(asset, deadline)

    async def get_archive(
        self,
        specifier: SpecifierLike = LATEST,
        platform: PlatformLike = None,
        deadline: Optional[Deadline] = None,
    ) -> ResolvedArchive:
        """
        Returns a verified archive for ``specifier`` on ``platform``.

        Cached archives are served while their digest matches the registry;
        otherwise the asset is downloaded, verified and, when verified, cached.
        """
        deadline = deadline or Deadline.never()
        target = as_platform(platform)

        async with ReleaseIndexClient(self.config, session=self._session) as client:
            index = await client.fetch_releases(deadline)
            release = resolve(as_specifier(specifier), index, self.config.include_prerelease)
            asset = locate(release, target)
            asset = await client.resolve_expected_hash(asset, deadline)

        if self.cache is not None:
            cached = await asyncio.to_thread(
                self.cache.get, release.version, asset.platform, asset.expected_hash
            )
            if cached is not None:
                log.info(f"Using cached archive for PostgreSQL {release.version} ({asset.platform})")
                return cached

        downloader = Downloader(self.config, session=self._session)
        archive = await downloader.download(asset, release.version, deadline)

        if self.cache is not None and archive.verified:
            try:
                await asyncio.to_thread(
                    self.cache.put, release.version, asset.platform, archive, asset.name
                )
            except OSError as e:
                log.warning(f"[yellow]Could not cache archive for {release.version}: {e}[/yellow]")
        return archive

    async def install(
        self,
        specifier: SpecifierLike,
        destination: Union[Path, str],
        platform: PlatformLike = None,
        deadline: Optional[Deadline] = None,
    ) -> InstallResult:
        """
        Resolves, fetches and extracts PostgreSQL into ``destination``.

        Extraction runs in a worker thread and is not interrupted once started.
        """
        archive = await self.get_archive(specifier, platform, deadline)
        destination = Path(destination)
        try:
            files = await asyncio.to_thread(
                extract, archive, destination, self.config.strip_components
            )
        finally:
            archive.discard()

        log.info(f"PostgreSQL {archive.version} extracted to {destination}")
        return InstallResult(
            version=archive.version,
            platform=archive.platform,
            hash=archive.hash,
            verified=archive.verified,
            destination=destination,
            files=files,
            from_cache=archive.source == "cache",
        )


async def get_archive(
    specifier: SpecifierLike = LATEST,
    platform: PlatformLike = None,
    config: Optional[ArchiveConfig] = None,
    deadline: Optional[Deadline] = None,
) -> ResolvedArchive:
    """Module-level shortcut for :meth:`ArchivePipeline.get_archive`."""
    return await ArchivePipeline(config).get_archive(specifier, platform, deadline)


async def install(
    specifier: SpecifierLike,
    destination: Union[Path, str],
    platform: PlatformLike = None,
    config: Optional[ArchiveConfig] = None,
    deadline: Optional[Deadline] = None,
) -> InstallResult:
    """Module-level shortcut for :meth:`ArchivePipeline.install`."""
    return await ArchivePipeline(config).install(specifier, destination, platform, deadline)
