"""
An on-disk archive cache keyed by (version, platform).

Each entry lives in ``<cache_dir>/<version>/<platform>/`` as the archive file
plus an ``entry.json`` describing it. An entry is only served while its digest
still equals the digest the registry currently publishes.
"""

import logging
import os
import shutil
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from pg_archive.exceptions import CacheConflict
from pg_archive.models.platform import PlatformTriple
from pg_archive.models.release import ResolvedArchive
from pg_archive.models.version import SemanticVersion
from pg_archive.transfer.integrity import calculate_digest, normalize_digest

log = logging.getLogger(__name__)

# Per-key write locks shared by every cache instance in this process
_KEY_LOCKS: dict[tuple[str, str, str], threading.Lock] = {}
_KEY_LOCKS_GUARD = threading.Lock()


class CacheEntry(BaseModel):
    """Metadata persisted next to a cached archive."""

    version: str
    platform: str
    hash: str
    path: Path
    stored_at: datetime
    asset_name: Optional[str] = None


class ArchiveCache:
    """
    Stores verified archives between runs.

    ``get`` never writes except to drop entries that are stale or corrupt;
    ``put`` is serialized per key and idempotent for identical content.
    """

    ARCHIVE_FILE = "archive"
    ENTRY_FILE = "entry.json"

    def __init__(self, cache_dir: Path):
        """
        Initializes the cache.

        Args:
            cache_dir: Directory owned by this cache. Created on first write.
        """
        self.cache_dir = Path(cache_dir).expanduser()

    def _key_dir(self, version: SemanticVersion, platform: PlatformTriple) -> Path:
        return self.cache_dir / str(version) / str(platform)

    def _lock_for(self, version: SemanticVersion, platform: PlatformTriple) -> threading.Lock:
        key = (str(self.cache_dir.resolve()), str(version), str(platform))
        with _KEY_LOCKS_GUARD:
            return _KEY_LOCKS.setdefault(key, threading.Lock())

    def _read_entry(self, key_dir: Path) -> Optional[CacheEntry]:
        entry_path = key_dir / self.ENTRY_FILE
        if not entry_path.is_file():
            return None
        try:
            return CacheEntry.model_validate_json(entry_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            log.warning(f"Ignoring unreadable cache entry '{entry_path}': {e}")
            return None

    def get(
        self,
        version: SemanticVersion,
        platform: PlatformTriple,
        expected_hash: Optional[str],
    ) -> Optional[ResolvedArchive]:
        """
        Returns the cached archive if it is still valid for ``expected_hash``.

        Entries whose digest no longer matches the published digest, or whose
        file no longer hashes to the stored digest, are invalidated.
        """
        if expected_hash is None:
            log.debug(f"Cache skipped for {version} {platform}: no published digest.")
            return None

        key_dir = self._key_dir(version, platform)
        entry = self._read_entry(key_dir)
        if entry is None:
            log.debug(f"Cache miss for {version} {platform}")
            return None

        expected = normalize_digest(expected_hash)
        if entry.hash != expected:
            log.info(
                f"Cached archive for {version} {platform} is stale "
                "(registry digest changed); invalidating."
            )
            self.invalidate(version, platform)
            return None

        archive_path = key_dir / self.ARCHIVE_FILE
        try:
            actual = calculate_digest(archive_path)
        except OSError as e:
            log.warning(f"Cached archive for {version} {platform} unreadable: {e}")
            self.invalidate(version, platform)
            return None
        if actual != entry.hash:
            log.warning(f"Cached archive for {version} {platform} is corrupt; invalidating.")
            self.invalidate(version, platform)
            return None

        log.debug(f"Cache hit for {version} {platform}")
        return ResolvedArchive(
            version=version,
            platform=platform,
            path=archive_path,
            hash=entry.hash,
            verified=True,
            source="cache",
            owns_file=False,
        )

    def put(
        self,
        version: SemanticVersion,
        platform: PlatformTriple,
        archive: ResolvedArchive,
        asset_name: Optional[str] = None,
    ) -> CacheEntry:
        """
        Stores ``archive`` under (version, platform).

        Raises:
            CacheConflict: If the key already holds different content.
        """
        digest = normalize_digest(archive.hash)
        key_dir = self._key_dir(version, platform)

        with self._lock_for(version, platform):
            existing = self._read_entry(key_dir)
            if existing is not None:
                if existing.hash == digest:
                    log.debug(f"Cache already holds {version} {platform}; nothing to do.")
                    return existing
                raise CacheConflict(
                    f"Cache entry for {version} {platform} holds digest {existing.hash}, "
                    f"refusing to overwrite with {digest}."
                )

            key_dir.mkdir(parents=True, exist_ok=True)
            archive_path = key_dir / self.ARCHIVE_FILE
            entry = CacheEntry(
                version=str(version),
                platform=str(platform),
                hash=digest,
                path=archive_path,
                stored_at=datetime.now(timezone.utc),
                asset_name=asset_name,
            )
            suffix = uuid.uuid4().hex
            tmp_archive = key_dir / f".{self.ARCHIVE_FILE}.{suffix}.tmp"
            tmp_entry = key_dir / f".{self.ENTRY_FILE}.{suffix}.tmp"
            try:
                shutil.copyfile(archive.path, tmp_archive)
                os.replace(tmp_archive, archive_path)
                tmp_entry.write_text(entry.model_dump_json(indent=2), encoding="utf-8")
                os.replace(tmp_entry, key_dir / self.ENTRY_FILE)
            finally:
                tmp_archive.unlink(missing_ok=True)
                tmp_entry.unlink(missing_ok=True)

        log.debug(f"Cached {version} {platform} at {archive_path}")
        return entry

    def invalidate(self, version: SemanticVersion, platform: PlatformTriple) -> bool:
        """Removes the entry for (version, platform). Returns True if one existed."""
        key_dir = self._key_dir(version, platform)
        with self._lock_for(version, platform):
            if not key_dir.exists():
                return False
            try:
                shutil.rmtree(key_dir)
            except OSError as e:
                log.warning(f"Failed to remove cache entry '{key_dir}': {e}")
                return False
        return True

    def entries(self) -> list[CacheEntry]:
        """Lists every readable entry in the cache."""
        if not self.cache_dir.is_dir():
            return []
        found = []
        for entry_path in sorted(self.cache_dir.glob(f"*/*/{self.ENTRY_FILE}")):
            entry = self._read_entry(entry_path.parent)
            if entry is not None:
                found.append(entry)
        return found

    def clear(self) -> bool:
        """Removes all items from the cache."""
        log.info("Clearing all cache entries...")
        if not self.cache_dir.exists():
            return True
        try:
            shutil.rmtree(self.cache_dir)
            return True
        except OSError as e:
            log.error(f"Failed to clear cache: {e}")
            return False
