"""Tests for the registry client against a local GitHub-style endpoint."""

import hashlib
import json

import pytest

from pg_archive.api.client import ReleaseIndexClient
from pg_archive.exceptions import (
    DeadlineExceeded,
    RegistryMalformed,
    RegistryUnreachable,
)
from pg_archive.models.version import SemanticVersion
from pg_archive.utils.deadline import Deadline

from .conftest import DARWIN, LINUX, LINUX_TARGET, MUSL_TARGET, github_release


@pytest.mark.asyncio
async def test_fetch_releases_maps_assets_by_platform(registry, published, config):
    async with ReleaseIndexClient(config) as client:
        index = await client.fetch_releases()

    assert len(index) == 5
    release = index[SemanticVersion(16, 4, 0)]
    assert set(release.assets) == {LINUX, DARWIN}
    asset = release.assets[LINUX]
    assert asset.name == f"postgresql-16.4.0-{LINUX_TARGET}.tar.gz"
    assert asset.hash_url.endswith(".sha256")
    assert asset.expected_hash is None
    assert index[SemanticVersion.parse("17.0.0-rc1")].is_prerelease


@pytest.mark.asyncio
async def test_fetch_releases_is_memoized(registry, published, config):
    async with ReleaseIndexClient(config) as client:
        await client.fetch_releases()
        await client.fetch_releases()
    assert registry.hits("/releases") == 1


@pytest.mark.asyncio
async def test_fetch_releases_follows_pagination(registry, config):
    releases = [github_release(f"15.{n}.0") for n in range(150)]
    registry.serve_releases(releases)

    async with ReleaseIndexClient(config) as client:
        index = await client.fetch_releases()

    assert len(index) == 150
    pages = [query["page"][0] for path, query, _ in registry.requests if path == "/releases"]
    assert pages == ["1", "2"]


@pytest.mark.asyncio
async def test_drafts_and_non_version_tags_are_skipped(registry, config):
    registry.serve_releases(
        [
            github_release("16.4.0"),
            github_release("16.5.0", draft=True),
            github_release("nightly"),
        ]
    )
    async with ReleaseIndexClient(config) as client:
        index = await client.fetch_releases()
    assert list(index) == [SemanticVersion(16, 4, 0)]


@pytest.mark.asyncio
async def test_inline_digest_is_used(registry, config):
    name = f"postgresql-16.4.0-{LINUX_TARGET}.tar.gz"
    asset = registry.publish_asset(name, b"payload", sidecar=False, inline_digest=True)
    registry.serve_releases([github_release("16.4.0", [asset])])

    async with ReleaseIndexClient(config) as client:
        index = await client.fetch_releases()
    descriptor = index[SemanticVersion(16, 4, 0)].assets[LINUX]
    assert descriptor.expected_hash is not None
    assert len(descriptor.expected_hash) == 64


@pytest.mark.asyncio
async def test_resolve_expected_hash_reads_sidecar(registry, published, config):
    async with ReleaseIndexClient(config) as client:
        index = await client.fetch_releases()
        asset = index[SemanticVersion(16, 4, 0)].assets[LINUX]
        resolved = await client.resolve_expected_hash(asset)

    assert resolved.expected_hash == hashlib.sha256(published[asset.name]).hexdigest()


@pytest.mark.asyncio
async def test_foreign_assets_are_ignored(registry, config):
    registry.serve_releases(
        [
            github_release(
                "16.4.0",
                [
                    registry.publish_asset(f"postgresql-16.4.0-{LINUX_TARGET}.tar.gz", b"a"),
                    registry.publish_asset(f"postgresql-16.3.0-{MUSL_TARGET}.tar.gz", b"b"),
                    registry.publish_asset("checksums.txt", b"c"),
                ],
            )
        ]
    )
    async with ReleaseIndexClient(config) as client:
        index = await client.fetch_releases()
    assert list(index[SemanticVersion(16, 4, 0)].assets) == [LINUX]


@pytest.mark.asyncio
async def test_preferred_archive_format_wins(registry, config):
    registry.serve_releases(
        [
            github_release(
                "16.4.0",
                [
                    registry.publish_asset(f"postgresql-16.4.0-{LINUX_TARGET}.zip", b"z"),
                    registry.publish_asset(f"postgresql-16.4.0-{LINUX_TARGET}.tar.gz", b"t"),
                ],
            )
        ]
    )
    async with ReleaseIndexClient(config) as client:
        index = await client.fetch_releases()
    assert index[SemanticVersion(16, 4, 0)].assets[LINUX].name.endswith(".tar.gz")


@pytest.mark.asyncio
async def test_two_archives_of_same_format_are_malformed(registry, config):
    duplicate = registry.publish_asset(f"postgresql-16.4.0-{LINUX_TARGET}.tar.gz", b"t")
    registry.serve_releases([github_release("16.4.0", [duplicate, dict(duplicate)])])

    async with ReleaseIndexClient(config) as client:
        with pytest.raises(RegistryMalformed):
            await client.fetch_releases()


@pytest.mark.asyncio
async def test_retries_transient_server_errors(registry, config):
    payload = json.dumps([github_release("16.4.0")]).encode()
    registry.route("/releases", [(503, b"busy"), (500, b"oops"), (200, payload)])

    async with ReleaseIndexClient(config) as client:
        index = await client.fetch_releases()

    assert list(index) == [SemanticVersion(16, 4, 0)]
    assert registry.hits("/releases") == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(registry, config):
    registry.route("/releases", (502, b"bad gateway"))

    async with ReleaseIndexClient(config) as client:
        with pytest.raises(RegistryUnreachable):
            await client.fetch_releases()
    assert registry.hits("/releases") == config.max_retries + 1


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(registry, config):
    registry.route("/releases", (404, b"missing"))

    async with ReleaseIndexClient(config) as client:
        with pytest.raises(RegistryUnreachable):
            await client.fetch_releases()
    assert registry.hits("/releases") == 1


@pytest.mark.asyncio
async def test_unreachable_host(config):
    config.registry_url = "http://127.0.0.1:9/releases"
    async with ReleaseIndexClient(config) as client:
        with pytest.raises(RegistryUnreachable):
            await client.fetch_releases()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [b"<html>rate limited</html>", b'{"message": "Not a list"}', b'[{"name": "no tag"}]'],
)
async def test_malformed_payloads(registry, config, body):
    registry.route("/releases", (200, body))
    async with ReleaseIndexClient(config) as client:
        with pytest.raises(RegistryMalformed):
            await client.fetch_releases()


@pytest.mark.asyncio
async def test_expired_deadline_stops_before_request(registry, published, config):
    async with ReleaseIndexClient(config) as client:
        with pytest.raises(DeadlineExceeded):
            await client.fetch_releases(Deadline(timeout=0))
    assert registry.hits("/releases") == 0


@pytest.mark.asyncio
async def test_token_only_sent_to_registry_host(registry, published, config):
    config.github_token = "secret-token"
    async with ReleaseIndexClient(config) as client:
        await client.fetch_releases()
        headers = client._headers_for("https://objects.githubusercontent.com/archive")

    _, _, request_headers = registry.requests[0]
    assert request_headers.get("Authorization") == "Bearer secret-token"
    assert "Authorization" not in headers
