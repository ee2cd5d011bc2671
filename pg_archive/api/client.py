"""
Async client for the release registry with bounded retries on transient failures.
"""

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import aiohttp
from pydantic import TypeAdapter, ValidationError

from pg_archive import __version__
from pg_archive.exceptions import RegistryMalformed, RegistryUnreachable
from pg_archive.models.config import ArchiveConfig
from pg_archive.models.platform import PlatformTriple
from pg_archive.models.release import AssetDescriptor, ReleaseDescriptor, ReleaseIndex
from pg_archive.models.version import SemanticVersion
from pg_archive.transfer.integrity import DIGEST_ALGORITHM, normalize_digest, parse_hash_text
from pg_archive.utils.deadline import Deadline

from .schema import GitHubAsset, GitHubRelease

log = logging.getLogger(__name__)

_RELEASES_ADAPTER = TypeAdapter(List[GitHubRelease])

# Archive asset names look like postgresql-16.4.0-x86_64-unknown-linux-gnu.tar.gz
_ASSET_STEM_REGEX = re.compile(
    r"^postgresql-(?P<version>\d+(?:\.\d+)*(?:-(?:alpha|beta|rc)[0-9.]*)?)-(?P<target>.+)$"
)


class ReleaseIndexClient:
    """
    Fetches the list of published PostgreSQL releases from a GitHub-style
    releases endpoint.

    Features:
    - Pagination over ``per_page``/``page`` parameters
    - Retries with exponential backoff on connection errors, timeouts, 429 and 5xx
    - No retry on other 4xx responses
    - Memoized index for the lifetime of the client
    """

    PER_PAGE = 100
    MAX_PAGES = 50
    # Ordered by preference when one release ships several formats for a platform
    ARCHIVE_EXTENSIONS = (".tar.gz", ".tgz", ".tar.xz", ".tar.bz2", ".zip")
    HASH_SUFFIX = f".{DIGEST_ALGORITHM}"

    def __init__(
        self,
        config: ArchiveConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initializes the registry client.

        Args:
            config: Validated configuration providing the registry URL,
                timeouts and retry policy.
            session: Optional externally-owned session. When omitted the
                client creates and closes its own.
        """
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._index: Optional[ReleaseIndex] = None

    async def __aenter__(self) -> "ReleaseIndexClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=4, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"User-Agent": f"pg-archive/{__version__}"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def _headers_for(self, url: str) -> Dict[str, str]:
        host = urlparse(url).hostname or ""
        registry_host = urlparse(self.config.registry_url).hostname or ""
        headers: Dict[str, str] = {}
        if host == "api.github.com":
            headers["Accept"] = "application/vnd.github+json"
            headers["X-GitHub-Api-Version"] = "2022-11-28"
        token = self.config.github_token
        if token is None and host == "api.github.com":
            token = os.getenv("GITHUB_TOKEN") or None
        # Credentials only go to the registry itself, never to download mirrors
        if token and host == registry_host:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _get_with_retries(
        self,
        url: str,
        deadline: Deadline,
        params: Optional[Dict[str, Any]] = None,
    ) -> bytes:
        """
        Performs a GET, retrying transient failures up to ``max_retries`` times.

        Raises:
            RegistryUnreachable: On a non-transient 4xx or once retries are exhausted.
            DeadlineExceeded / OperationCancelled: From the deadline checks.
        """
        session = await self._initialize_session()
        attempts = self.config.max_retries + 1
        last_error = "unknown error"

        for attempt in range(1, attempts + 1):
            deadline.check(f"registry request to {url}")
            timeout = deadline.client_timeout(
                self.config.timeout, self.config.connect_timeout
            )
            try:
                async with session.get(
                    url, params=params, headers=self._headers_for(url), timeout=timeout
                ) as r:
                    if r.status == 429 or r.status >= 500:
                        last_error = f"HTTP {r.status}"
                    elif r.status >= 400:
                        raise RegistryUnreachable(
                            f"Registry request to {url} failed with HTTP {r.status}."
                        )
                    else:
                        return await r.read()
            except asyncio.TimeoutError:
                deadline.check(f"retry of {url}")
                last_error = "request timed out"
            except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as e:
                last_error = str(e) or type(e).__name__

            if attempt < attempts:
                delay = self.config.retry_base_delay * (2 ** (attempt - 1))
                remaining = deadline.remaining()
                if remaining is not None:
                    delay = min(delay, remaining)
                log.debug(
                    f"Registry attempt {attempt}/{attempts} for {url} failed: "
                    f"{last_error}. Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

        raise RegistryUnreachable(
            f"Registry at {url} unreachable after {attempts} attempts: {last_error}"
        )

    async def _fetch_page(self, page: int, deadline: Deadline) -> List[GitHubRelease]:
        body = await self._get_with_retries(
            self.config.registry_url,
            deadline,
            params={"per_page": self.PER_PAGE, "page": page},
        )
        try:
            payload = json.loads(body)
            return _RELEASES_ADAPTER.validate_python(payload)
        except (ValueError, ValidationError) as e:
            raise RegistryMalformed(
                f"Registry returned an unparseable release list (page {page}): {e}"
            ) from e

    async def fetch_releases(self, deadline: Optional[Deadline] = None) -> ReleaseIndex:
        """
        Fetches every release from the registry and maps it to descriptors.
        The result is memoized on this client.
        """
        if self._index is not None:
            return self._index

        deadline = deadline or Deadline.never()
        releases: List[ReleaseDescriptor] = []
        for page in range(1, self.MAX_PAGES + 1):
            items = await self._fetch_page(page, deadline)
            for item in items:
                descriptor = self._to_descriptor(item)
                if descriptor is not None:
                    releases.append(descriptor)
            if len(items) < self.PER_PAGE:
                break

        self._index = ReleaseIndex.from_releases(releases)
        log.debug(f"Fetched {len(self._index)} releases from {self.config.registry_url}")
        return self._index

    async def resolve_expected_hash(
        self, asset: AssetDescriptor, deadline: Optional[Deadline] = None
    ) -> AssetDescriptor:
        """
        Returns ``asset`` with its expected digest filled in from the published
        sidecar file, if the registry did not inline one.
        """
        if asset.expected_hash is not None or asset.hash_url is None:
            return asset
        log.debug(f"Fetching digest for {asset.name} from {asset.hash_url}")
        body = await self._get_with_retries(asset.hash_url, deadline or Deadline.never())
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RegistryMalformed(f"Digest file for {asset.name} is not text.") from e
        return asset.with_expected_hash(parse_hash_text(text))

    def _to_descriptor(self, release: GitHubRelease) -> Optional[ReleaseDescriptor]:
        """Maps a GitHub release onto a descriptor; None if it is not a usable release."""
        if release.draft:
            return None
        try:
            version = SemanticVersion.parse(release.tag_name)
        except ValueError:
            log.debug(f"Skipping release with non-version tag '{release.tag_name}'")
            return None

        hash_urls = {
            asset.name[: -len(self.HASH_SUFFIX)]: asset.browser_download_url
            for asset in release.assets
            if asset.name.endswith(self.HASH_SUFFIX)
        }

        assets: Dict[PlatformTriple, AssetDescriptor] = {}
        ranks: Dict[PlatformTriple, int] = {}
        for asset in release.assets:
            parsed = self._parse_asset_name(asset.name, version)
            if parsed is None:
                continue
            platform, rank = parsed
            if platform in assets and ranks[platform] == rank:
                raise RegistryMalformed(
                    f"Release {version} has more than one '{asset.name}' style "
                    f"archive for {platform}."
                )
            if platform in assets and ranks[platform] < rank:
                continue
            assets[platform] = AssetDescriptor(
                platform=platform,
                name=asset.name,
                download_url=asset.browser_download_url,
                expected_hash=self._inline_digest(asset),
                hash_url=hash_urls.get(asset.name),
                size=asset.size,
            )
            ranks[platform] = rank

        return ReleaseDescriptor(
            version=version,
            published_at=release.published_at,
            prerelease=release.prerelease,
            assets=assets,
        )

    def _parse_asset_name(
        self, name: str, version: SemanticVersion
    ) -> Optional[tuple[PlatformTriple, int]]:
        """Returns the platform and format preference rank of an archive asset."""
        for rank, extension in enumerate(self.ARCHIVE_EXTENSIONS):
            if name.endswith(extension):
                stem = name[: -len(extension)]
                break
        else:
            return None

        match = _ASSET_STEM_REGEX.match(stem)
        if not match:
            return None
        try:
            asset_version = SemanticVersion.parse(match.group("version"))
            platform = PlatformTriple.from_target(match.group("target"))
        except ValueError:
            log.debug(f"Ignoring asset with unrecognised name '{name}'")
            return None
        if asset_version != version:
            log.debug(f"Ignoring asset '{name}' that does not belong to {version}")
            return None
        return platform, rank

    @staticmethod
    def _inline_digest(asset: GitHubAsset) -> Optional[str]:
        if asset.digest and asset.digest.lower().startswith(f"{DIGEST_ALGORITHM}:"):
            return normalize_digest(asset.digest)
        return None
