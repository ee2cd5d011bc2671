"""Data models describing releases, their assets and downloaded archives."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from types import MappingProxyType

from pg_archive.models.platform import PlatformTriple
from pg_archive.models.version import SemanticVersion

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetDescriptor:
    """A single downloadable, platform-specific archive of a release."""

    platform: PlatformTriple
    name: str
    download_url: str
    expected_hash: str | None = None
    hash_url: str | None = None
    size: int | None = None

    def with_expected_hash(self, digest: str) -> AssetDescriptor:
        return replace(self, expected_hash=digest)


@dataclass(frozen=True)
class ReleaseDescriptor:
    """One published release and its assets keyed by platform."""

    version: SemanticVersion
    published_at: datetime | None = None
    prerelease: bool = False
    assets: Mapping[PlatformTriple, AssetDescriptor] = field(
        default_factory=dict, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "assets", MappingProxyType(dict(self.assets)))

    @property
    def is_prerelease(self) -> bool:
        return self.prerelease or self.version.is_prerelease

    @property
    def platforms(self) -> list[PlatformTriple]:
        return sorted(self.assets, key=str)


class ReleaseIndex(Mapping[SemanticVersion, ReleaseDescriptor]):
    """An immutable view of every known release, keyed by version."""

    def __init__(self, releases: Mapping[SemanticVersion, ReleaseDescriptor] | None = None):
        self._releases = dict(releases or {})

    @classmethod
    def from_releases(cls, releases: list[ReleaseDescriptor]) -> ReleaseIndex:
        """Builds an index, keeping the first descriptor seen for each version."""
        by_version: dict[SemanticVersion, ReleaseDescriptor] = {}
        for release in releases:
            if release.version in by_version:
                log.warning(f"Duplicate release {release.version} ignored.")
                continue
            by_version[release.version] = release
        return cls(by_version)

    def __getitem__(self, version: SemanticVersion) -> ReleaseDescriptor:
        return self._releases[version]

    def __iter__(self) -> Iterator[SemanticVersion]:
        return iter(self._releases)

    def __len__(self) -> int:
        return len(self._releases)

    def newest_first(self) -> list[ReleaseDescriptor]:
        return sorted(self._releases.values(), key=lambda r: r.version, reverse=True)


@dataclass
class ResolvedArchive:
    """
    A verified (or explicitly unverified) archive ready for extraction.

    When ``owns_file`` is set the archive lives in a temporary spill file that
    :meth:`discard` removes; cached archives are never deleted through here.
    """

    version: SemanticVersion
    platform: PlatformTriple
    path: Path
    hash: str
    verified: bool
    source: str = "download"
    owns_file: bool = True

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def discard(self) -> None:
        """Removes the spill file (and its temporary directory) if this archive owns it."""
        if not self.owns_file:
            return
        try:
            self.path.unlink(missing_ok=True)
            parent = self.path.parent
            if parent.name.startswith("pg-archive-") and not any(parent.iterdir()):
                parent.rmdir()
        except OSError as e:
            log.warning(f"Could not remove temporary archive '{self.path}': {e}")
        self.owns_file = False

    def __enter__(self) -> ResolvedArchive:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.discard()
        return False


@dataclass(frozen=True)
class InstallResult:
    """Outcome of an install: what was extracted where."""

    version: SemanticVersion
    platform: PlatformTriple
    hash: str
    verified: bool
    destination: Path
    files: list[Path]
    from_cache: bool = False
