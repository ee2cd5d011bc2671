"""
Selects the archive asset of a release that runs on a target platform.
"""

import logging
from typing import Optional

from pg_archive.exceptions import UnsupportedPlatform
from pg_archive.models.platform import PlatformTriple
from pg_archive.models.release import AssetDescriptor, ReleaseDescriptor

log = logging.getLogger(__name__)

# Order in which ABI variants are chosen when several fit. Statically linked
# musl builds come first because they run on both musl and glibc hosts.
ABI_PREFERENCE = ("musl", "gnu", "gnueabihf", "gnueabi", "msvc", None)

# ABIs a host can fall back to when no exact ABI match exists
ABI_COMPATIBILITY = {
    "gnu": ("gnu", "musl"),
}


def _preference_rank(abi: Optional[str]) -> int:
    try:
        return ABI_PREFERENCE.index(abi)
    except ValueError:
        return len(ABI_PREFERENCE)


def locate(
    release: ReleaseDescriptor, platform: Optional[PlatformTriple] = None
) -> AssetDescriptor:
    """
    Returns the asset of ``release`` for ``platform`` (the host by default).

    Matching is exact on OS and architecture. An exact ABI match wins;
    otherwise the compatible ABIs are tried in ``ABI_PREFERENCE`` order.

    Raises:
        UnsupportedPlatform: If no asset fits.
    """
    target = platform or PlatformTriple.current()

    exact = release.assets.get(target)
    if exact is not None:
        return exact

    candidates = [
        asset
        for triple, asset in release.assets.items()
        if triple.os == target.os and triple.arch == target.arch
    ]
    if target.abi is not None:
        allowed = ABI_COMPATIBILITY.get(target.abi, (target.abi,))
        candidates = [asset for asset in candidates if asset.platform.abi in allowed]

    if not candidates:
        available = ", ".join(str(p) for p in release.platforms) or "none"
        raise UnsupportedPlatform(
            f"PostgreSQL {release.version} has no archive for {target} "
            f"(available: {available})."
        )

    chosen = min(candidates, key=lambda asset: _preference_rank(asset.platform.abi))
    log.debug(f"Selected {chosen.name} for {target} (ABI {chosen.platform.abi})")
    return chosen
