"""
Content digest helpers used to verify downloaded archives.
"""

import hashlib
import logging
from pathlib import Path

from pg_archive.exceptions import IntegrityMismatch, RegistryMalformed

log = logging.getLogger(__name__)

# Must match the algorithm the registry publishes digests with
DIGEST_ALGORITHM = "sha256"
_READ_CHUNK = 65536


def new_hasher():
    return hashlib.new(DIGEST_ALGORITHM)


def calculate_digest(path: Path) -> str:
    digest = new_hasher()
    with path.open("rb") as source:
        for chunk in iter(lambda: source.read(_READ_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def normalize_digest(value: str) -> str:
    """Lowercases a hex digest and strips an ``sha256:`` style prefix."""
    value = value.strip().lower()
    prefix = f"{DIGEST_ALGORITHM}:"
    if value.startswith(prefix):
        value = value[len(prefix) :]
    return value


def parse_hash_text(text: str) -> str:
    """Extracts the digest from a ``sha256sum``-style sidecar file."""
    for token in text.split():
        if token:
            return normalize_digest(token)
    raise RegistryMalformed("Hash file did not contain a digest")


def verify_digest(actual: str, expected: str | None, label: str) -> bool:
    """
    Compares a computed digest with the published one.

    Returns:
        True if the digest was verified, False if no digest was published.

    Raises:
        IntegrityMismatch: If both digests are present and differ.
    """
    if expected is None:
        log.warning(
            f"[yellow]No published digest for '{label}'; archive is unverified.[/yellow]"
        )
        return False
    expected = normalize_digest(expected)
    if normalize_digest(actual) != expected:
        raise IntegrityMismatch(
            f"Digest mismatch for '{label}': expected {expected}, got {actual}",
            expected=expected,
            actual=actual,
        )
    log.debug(f"Verified {DIGEST_ALGORITHM} digest for '{label}'.")
    return True
