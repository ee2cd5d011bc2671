"""
Streams archive assets over HTTP into a temporary spill file, hashing every
chunk, and verifies the digest before handing the archive on.
"""

import asyncio
import logging
import shutil
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp

from pg_archive import __version__
from pg_archive.exceptions import DownloadFailed
from pg_archive.models.config import ArchiveConfig
from pg_archive.models.release import AssetDescriptor, ResolvedArchive
from pg_archive.models.version import SemanticVersion
from pg_archive.utils.deadline import Deadline

from .integrity import new_hasher, verify_digest

log = logging.getLogger(__name__)


class Downloader:
    """
    Downloads one asset per call. ``download`` is the awaitable entry point and
    ``download_blocking`` runs the very same coroutine on a private event loop.
    """

    def __init__(
        self,
        config: ArchiveConfig,
        session: Optional[aiohttp.ClientSession] = None,
        spill_dir: Optional[Path] = None,
    ):
        """
        Args:
            config: Provides timeouts and the streaming chunk size.
            session: Optional externally-owned session (async use only).
            spill_dir: Where temporary archive files are created. Defaults to
                the system temporary directory.
        """
        self.config = config
        self._session = session
        self.spill_dir = spill_dir

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None and not self._session.closed:
            yield self._session
            return
        # Archives are served as-is; never let aiohttp undo a Content-Encoding
        async with aiohttp.ClientSession(
            auto_decompress=False,
            headers={"User-Agent": f"pg-archive/{__version__}"},
        ) as session:
            yield session

    async def download(
        self,
        asset: AssetDescriptor,
        version: SemanticVersion,
        deadline: Optional[Deadline] = None,
    ) -> ResolvedArchive:
        """
        Downloads and verifies ``asset``.

        Raises:
            DownloadFailed: On HTTP, connection or timeout errors.
            IntegrityMismatch: If the payload does not match the expected digest.
            DeadlineExceeded / OperationCancelled: From the deadline checks.
        """
        async with self._session_scope() as session:
            return await self._fetch(session, asset, version, deadline or Deadline.never())

    def download_blocking(
        self,
        asset: AssetDescriptor,
        version: SemanticVersion,
        deadline: Optional[Deadline] = None,
    ) -> ResolvedArchive:
        """Blocking variant of :meth:`download` with identical semantics."""
        scoped = Downloader(self.config, spill_dir=self.spill_dir)
        return asyncio.run(scoped.download(asset, version, deadline))

    async def _fetch(
        self,
        session: aiohttp.ClientSession,
        asset: AssetDescriptor,
        version: SemanticVersion,
        deadline: Deadline,
    ) -> ResolvedArchive:
        deadline.check(f"download of {asset.name}")
        if self.spill_dir is not None:
            self.spill_dir.mkdir(parents=True, exist_ok=True)
        spill_dir = Path(tempfile.mkdtemp(prefix="pg-archive-", dir=self.spill_dir))
        spill_path = spill_dir / Path(asset.name).name
        hasher = new_hasher()
        bytes_downloaded = 0

        log.info(f"Downloading {asset.name} from {asset.download_url}")
        try:
            try:
                timeout = deadline.stream_timeout(
                    self.config.connect_timeout, self.config.read_timeout
                )
                async with session.get(
                    asset.download_url, timeout=timeout, allow_redirects=True
                ) as response:
                    if response.status >= 400:
                        raise DownloadFailed(
                            f"Download of {asset.name} failed with HTTP {response.status}."
                        )
                    async with aiofiles.open(spill_path, "wb") as f:
                        async for chunk in response.content.iter_chunked(
                            self.config.chunk_size
                        ):
                            deadline.check(f"next chunk of {asset.name}")
                            hasher.update(chunk)
                            await f.write(chunk)
                            bytes_downloaded += len(chunk)
            # aiohttp socket timeouts are both TimeoutError and ClientError
            except asyncio.TimeoutError as e:
                deadline.check(f"rest of {asset.name}")
                raise DownloadFailed(
                    f"Download of {asset.name} stalled for more than "
                    f"{self.config.read_timeout:g}s."
                ) from e
            except aiohttp.ClientError as e:
                raise DownloadFailed(f"Download of {asset.name} failed: {e}") from e

            actual = hasher.hexdigest()
            verified = verify_digest(actual, asset.expected_hash, asset.name)
        except BaseException:
            # Partial or rejected payloads never reach the extractor
            shutil.rmtree(spill_dir, ignore_errors=True)
            raise

        log.debug(f"Downloaded {bytes_downloaded} bytes of {asset.name} to {spill_path}")
        return ResolvedArchive(
            version=version,
            platform=asset.platform,
            path=spill_path,
            hash=actual,
            verified=verified,
            source="download",
            owns_file=True,
        )
