"""Shared test fixtures for pytest.

Provides a local HTTP registry that speaks the GitHub releases format,
archive builders, and a ready-made configuration pointing at the registry.
"""

import hashlib
import io
import json
import stat
import tarfile
import threading
import zipfile
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable, Optional, Union
from urllib.parse import parse_qs, urlparse

import pytest

from pg_archive.models.config import ArchiveConfig
from pg_archive.models.platform import PlatformTriple

LINUX_TARGET = "x86_64-unknown-linux-gnu"
MUSL_TARGET = "x86_64-unknown-linux-musl"
DARWIN_TARGET = "aarch64-apple-darwin"
LINUX = PlatformTriple("linux", "x86_64", "gnu")
DARWIN = PlatformTriple("darwin", "aarch64")

Response = tuple[int, bytes]
Route = Union[Response, list, Callable[[dict[str, list[str]]], Response]]


class LocalRegistry:
    """A threaded HTTP server with programmable routes.

    A route is either a fixed ``(status, body)`` pair, a list of such pairs
    served in order (the last one repeats), or a callable receiving the
    parsed query string.
    """

    def __init__(self):
        self.routes: dict[str, Route] = {}
        self.requests: list[tuple[str, dict[str, list[str]], dict[str, str]]] = []
        self.stalls: dict[str, tuple[bytes, int]] = {}
        self._released = threading.Event()
        registry = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                parsed = urlparse(self.path)
                query = parse_qs(parsed.query)
                registry.requests.append((parsed.path, query, dict(self.headers)))
                if parsed.path in registry.stalls:
                    self._stall(*registry.stalls[parsed.path])
                    return
                status, body = registry._respond(parsed.path, query)
                self.send_response(status)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _stall(self, head, length):
                self.send_response(200)
                self.send_header("Content-Length", str(length))
                self.end_headers()
                self.wfile.write(head)
                self.wfile.flush()
                registry._released.wait(10)

            def log_message(self, format, *args):
                pass

        self._server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    def start(self) -> "LocalRegistry":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._released.set()
        self._server.shutdown()
        self._server.server_close()

    def url(self, path: str) -> str:
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}{path}"

    def route(self, path: str, response: Route) -> None:
        self.routes[path] = response

    def stall(self, path: str, head: bytes, length: int) -> None:
        """Announces ``length`` bytes, sends ``head`` and then goes silent."""
        self.stalls[path] = (head, length)

    def hits(self, path: str) -> int:
        return sum(1 for requested, _, _ in self.requests if requested == path)

    def _respond(self, path: str, query: dict[str, list[str]]) -> Response:
        route = self.routes.get(path)
        if route is None:
            return 404, b"not found"
        if callable(route):
            return route(query)
        if isinstance(route, list):
            return route.pop(0) if len(route) > 1 else route[0]
        return route

    # GitHub release helpers

    def serve_releases(self, releases: list[dict[str, Any]], path: str = "/releases") -> None:
        """Serves ``releases`` paginated the way the GitHub API does."""

        def page(query: dict[str, list[str]]) -> Response:
            per_page = int(query.get("per_page", ["30"])[0])
            number = int(query.get("page", ["1"])[0])
            start = (number - 1) * per_page
            return 200, json.dumps(releases[start : start + per_page]).encode()

        self.route(path, page)

    def publish_asset(
        self,
        name: str,
        payload: bytes,
        sidecar: bool = True,
        inline_digest: bool = False,
    ) -> dict[str, Any]:
        """Serves an archive (and optionally its sha256 sidecar) and returns asset JSON."""
        digest = hashlib.sha256(payload).hexdigest()
        self.route(f"/download/{name}", (200, payload))
        asset = {
            "name": name,
            "browser_download_url": self.url(f"/download/{name}"),
            "size": len(payload),
        }
        if inline_digest:
            asset["digest"] = f"sha256:{digest}"
        if sidecar:
            self.route(f"/download/{name}.sha256", (200, f"{digest}  {name}\n".encode()))
        return asset

    def sidecar_asset(self, name: str) -> dict[str, Any]:
        return {
            "name": f"{name}.sha256",
            "browser_download_url": self.url(f"/download/{name}.sha256"),
            "size": 64,
        }


def github_release(
    tag: str,
    assets: Optional[list[dict[str, Any]]] = None,
    prerelease: bool = False,
    draft: bool = False,
) -> dict[str, Any]:
    return {
        "tag_name": tag,
        "name": f"PostgreSQL {tag}",
        "draft": draft,
        "prerelease": prerelease,
        "published_at": "2024-08-08T12:00:00Z",
        "assets": assets or [],
        "html_url": f"https://example.invalid/releases/{tag}",
    }


def build_tar_gz(path: Path, members: list[dict[str, Any]]) -> Path:
    """Writes a gzip tarball.

    Each member is a dict with ``name`` and optionally ``data``, ``mode`` and
    ``type`` (file, dir, symlink, hardlink, fifo) plus ``target`` for links.
    """
    with tarfile.open(path, "w:gz") as tar:
        for member in members:
            info = tarfile.TarInfo(member["name"])
            info.mode = member.get("mode", 0o644)
            kind = member.get("type", "file")
            if kind == "dir":
                info.type = tarfile.DIRTYPE
                info.mode = member.get("mode", 0o755)
                tar.addfile(info)
            elif kind == "symlink":
                info.type = tarfile.SYMTYPE
                info.linkname = member["target"]
                tar.addfile(info)
            elif kind == "hardlink":
                info.type = tarfile.LNKTYPE
                info.linkname = member["target"]
                tar.addfile(info)
            elif kind == "fifo":
                info.type = tarfile.FIFOTYPE
                tar.addfile(info)
            else:
                data = member.get("data", b"")
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
    return path


def build_zip(path: Path, members: list[dict[str, Any]]) -> Path:
    """Writes a zip archive with Unix permission bits in the external attributes."""
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as archive:
        for member in members:
            info = zipfile.ZipInfo(member["name"])
            info.create_system = 3
            kind = member.get("type", "file")
            if kind == "dir":
                info.external_attr = (stat.S_IFDIR | member.get("mode", 0o755)) << 16
                archive.writestr(info, b"")
            elif kind == "symlink":
                info.external_attr = (stat.S_IFLNK | 0o777) << 16
                archive.writestr(info, member["target"])
            else:
                info.external_attr = (stat.S_IFREG | member.get("mode", 0o644)) << 16
                archive.writestr(info, member.get("data", b""))
    return path


def postgresql_members(version: str, target: str = LINUX_TARGET) -> list[dict[str, Any]]:
    """A miniature PostgreSQL distribution under its usual top-level folder."""
    root = f"postgresql-{version}-{target}"
    return [
        {"name": f"{root}/", "type": "dir"},
        {"name": f"{root}/bin/", "type": "dir", "mode": 0o755},
        {"name": f"{root}/bin/postgres", "data": f"postgres {version}\n".encode(), "mode": 0o755},
        {"name": f"{root}/bin/initdb", "data": b"#!/bin/sh\nexit 0\n", "mode": 0o750},
        {"name": f"{root}/lib/", "type": "dir"},
        {"name": f"{root}/lib/libpq.so.5", "data": b"\x7fELF libpq", "mode": 0o644},
        {"name": f"{root}/lib/libpq.so", "type": "symlink", "target": "libpq.so.5"},
        {"name": f"{root}/share/README", "data": b"PostgreSQL\n", "mode": 0o600},
    ]


@pytest.fixture
def registry():
    """A running local registry, stopped after the test."""
    server = LocalRegistry().start()
    yield server
    server.stop()


@pytest.fixture
def archive_factory(tmp_path):
    """Builds PostgreSQL-like tarballs and returns their bytes."""
    build_dir = tmp_path / "built"
    build_dir.mkdir()

    def factory(version: str, target: str = LINUX_TARGET) -> bytes:
        path = build_dir / f"postgresql-{version}-{target}.tar.gz"
        build_tar_gz(path, postgresql_members(version, target))
        return path.read_bytes()

    return factory


@pytest.fixture
def published(registry, archive_factory):
    """Publishes 12.1.0, 13.4.0, 13.10.0, 16.4.0 and a 17.0.0-rc1 pre-release.

    Every release ships a linux gnu and a darwin aarch64 archive with sha256
    sidecars. Returns the payload bytes keyed by asset name.
    """
    payloads: dict[str, bytes] = {}
    releases = []
    for tag, prerelease in (
        ("17.0.0-rc1", True),
        ("16.4.0", False),
        ("13.10.0", False),
        ("13.4.0", False),
        ("12.1.0", False),
    ):
        assets = []
        for target in (LINUX_TARGET, DARWIN_TARGET):
            name = f"postgresql-{tag}-{target}.tar.gz"
            payloads[name] = archive_factory(tag, target)
            assets.append(registry.publish_asset(name, payloads[name]))
            assets.append(registry.sidecar_asset(name))
        releases.append(github_release(tag, assets, prerelease=prerelease))
    registry.serve_releases(releases)
    return payloads


@pytest.fixture
def config(registry, tmp_path) -> ArchiveConfig:
    """Configuration pointing at the local registry with a private cache."""
    return ArchiveConfig(
        registry_url=registry.url("/releases"),
        cache_dir=tmp_path / "cache",
        timeout=10.0,
        connect_timeout=5.0,
        retry_base_delay=0.0,
    )
