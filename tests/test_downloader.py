"""Tests for streaming downloads and digest verification."""

import hashlib
import logging
import threading

import pytest

from pg_archive.exceptions import (
    DeadlineExceeded,
    DownloadFailed,
    IntegrityMismatch,
    OperationCancelled,
)
from pg_archive.models.release import AssetDescriptor
from pg_archive.models.version import SemanticVersion
from pg_archive.transfer.downloader import Downloader
from pg_archive.transfer.integrity import (
    calculate_digest,
    normalize_digest,
    parse_hash_text,
    verify_digest,
)
from pg_archive.utils.deadline import Deadline

from .conftest import LINUX

VERSION = SemanticVersion(16, 4, 0)
PAYLOAD = b"postgres archive bytes " * 4096


def make_asset(registry, expected_hash=None, name="postgresql-16.4.0.tar.gz"):
    registry.route(f"/download/{name}", (200, PAYLOAD))
    return AssetDescriptor(
        platform=LINUX,
        name=name,
        download_url=registry.url(f"/download/{name}"),
        expected_hash=expected_hash,
    )


@pytest.fixture
def spill_dir(tmp_path):
    return tmp_path / "spill"


@pytest.mark.asyncio
async def test_verified_download(registry, config, spill_dir):
    digest = hashlib.sha256(PAYLOAD).hexdigest()
    asset = make_asset(registry, expected_hash=digest)

    archive = await Downloader(config, spill_dir=spill_dir).download(asset, VERSION)

    assert archive.verified
    assert archive.hash == digest
    assert archive.read_bytes() == PAYLOAD
    assert archive.source == "download"
    archive.discard()
    assert not archive.path.exists()
    assert list(spill_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_tampered_payload_is_rejected_and_removed(registry, config, spill_dir):
    tampered = bytearray(PAYLOAD)
    tampered[100] ^= 0xFF
    asset = make_asset(registry, expected_hash=hashlib.sha256(bytes(tampered)).hexdigest())

    with pytest.raises(IntegrityMismatch) as excinfo:
        await Downloader(config, spill_dir=spill_dir).download(asset, VERSION)

    assert excinfo.value.actual == hashlib.sha256(PAYLOAD).hexdigest()
    assert list(spill_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_missing_digest_returns_unverified(registry, config, spill_dir, caplog):
    asset = make_asset(registry)
    with caplog.at_level(logging.WARNING):
        archive = await Downloader(config, spill_dir=spill_dir).download(asset, VERSION)
    with archive:
        assert not archive.verified
        assert archive.hash == hashlib.sha256(PAYLOAD).hexdigest()
    assert "unverified" in caplog.text
    assert not archive.path.exists()


@pytest.mark.asyncio
async def test_http_error_raises_download_failed(registry, config, spill_dir):
    asset = AssetDescriptor(
        platform=LINUX, name="missing.tar.gz", download_url=registry.url("/download/missing")
    )
    with pytest.raises(DownloadFailed):
        await Downloader(config, spill_dir=spill_dir).download(asset, VERSION)
    assert list(spill_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_cancellation_stops_download(registry, config, spill_dir):
    cancel = threading.Event()
    cancel.set()
    asset = make_asset(registry)
    with pytest.raises(OperationCancelled):
        await Downloader(config, spill_dir=spill_dir).download(
            asset, VERSION, Deadline(cancel_event=cancel)
        )
    assert registry.hits("/download/postgresql-16.4.0.tar.gz") == 0


def stalled_asset(registry, name="stalled.tar.gz"):
    registry.stall(f"/download/{name}", PAYLOAD[:10], len(PAYLOAD))
    return AssetDescriptor(
        platform=LINUX, name=name, download_url=registry.url(f"/download/{name}")
    )


@pytest.mark.asyncio
async def test_deadline_expiring_mid_stream_raises_deadline_exceeded(
    registry, config, spill_dir
):
    asset = stalled_asset(registry)
    with pytest.raises(DeadlineExceeded):
        await Downloader(config, spill_dir=spill_dir).download(
            asset, VERSION, Deadline(timeout=0.5)
        )
    assert list(spill_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_stalled_stream_without_deadline_fails_on_read_timeout(
    registry, config, spill_dir
):
    config.read_timeout = 0.3
    asset = stalled_asset(registry)
    with pytest.raises(DownloadFailed, match="stalled"):
        await Downloader(config, spill_dir=spill_dir).download(asset, VERSION)
    assert list(spill_dir.iterdir()) == []


def test_stream_timeout_has_no_total_without_deadline():
    timeout = Deadline.never().stream_timeout(connect=15, read=90)
    assert timeout.total is None
    assert timeout.sock_read == 90

    bounded = Deadline(timeout=5).stream_timeout(connect=15, read=90)
    assert 0 < bounded.total <= 5
    assert bounded.sock_connect <= 5
    assert bounded.sock_read <= 5

def test_blocking_download_matches_async(registry, config, spill_dir):
    digest = hashlib.sha256(PAYLOAD).hexdigest()
    asset = make_asset(registry, expected_hash=f"sha256:{digest.upper()}")

    archive = Downloader(config, spill_dir=spill_dir).download_blocking(asset, VERSION)

    with archive:
        assert archive.verified
        assert calculate_digest(archive.path) == digest


def test_blocking_download_rejects_tampering(registry, config, spill_dir):
    asset = make_asset(registry, expected_hash="0" * 64)
    with pytest.raises(IntegrityMismatch):
        Downloader(config, spill_dir=spill_dir).download_blocking(asset, VERSION)
    assert list(spill_dir.iterdir()) == []


def test_digest_helpers():
    assert normalize_digest(" SHA256:ABCDEF ") == "abcdef"
    assert parse_hash_text("abc123  postgresql.tar.gz\n") == "abc123"
    assert verify_digest("abc", None, "x") is False
    assert verify_digest("abc", "ABC", "x") is True
    with pytest.raises(IntegrityMismatch):
        verify_digest("abc", "abd", "x")
