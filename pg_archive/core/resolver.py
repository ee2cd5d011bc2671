"""
Selects the single release that satisfies a version specifier.
"""

import logging
from collections.abc import Mapping

from pg_archive.exceptions import NoReleasesAvailable, VersionNotFound
from pg_archive.models.release import ReleaseDescriptor
from pg_archive.models.version import Exact, Latest, SemanticVersion, VersionSpecifier

log = logging.getLogger(__name__)


def resolve(
    specifier: VersionSpecifier,
    release_index: Mapping[SemanticVersion, ReleaseDescriptor],
    include_prerelease: bool = False,
) -> ReleaseDescriptor:
    """
    Returns the highest release matching ``specifier``.

    Pre-releases are only considered when requested exactly or when
    ``include_prerelease`` is set. Ordering is semantic (13.10 > 13.4).

    Raises:
        VersionNotFound: If no release matches.
        NoReleasesAvailable: If ``Latest`` is requested and nothing is selectable.
    """
    if isinstance(specifier, Exact):
        release = release_index.get(specifier.version)
        if release is None:
            raise VersionNotFound(f"PostgreSQL {specifier.version} is not published.")
        log.debug(f"Resolved {specifier} to {release.version}")
        return release

    candidates = [
        release
        for version, release in release_index.items()
        if specifier.matches(version)
        and (include_prerelease or not release.is_prerelease)
    ]
    if not candidates:
        if isinstance(specifier, Latest):
            raise NoReleasesAvailable("The registry lists no available releases.")
        raise VersionNotFound(f"No published release matches '{specifier}'.")

    chosen = max(candidates, key=lambda release: release.version)
    log.debug(f"Resolved {specifier} to {chosen.version} ({len(candidates)} candidates)")
    return chosen
