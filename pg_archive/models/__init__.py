"""
Data Models Layer.

This package contains the value types shared across the pipeline: versions
and specifiers, platform triples, release descriptors and the validated
configuration model.
"""

from .config import ArchiveConfig
from .platform import PlatformTriple
from .release import (
    AssetDescriptor,
    InstallResult,
    ReleaseDescriptor,
    ReleaseIndex,
    ResolvedArchive,
)
from .version import (
    LATEST,
    Exact,
    Latest,
    LatestInMajor,
    LatestInMajorMinor,
    SemanticVersion,
    VersionSpecifier,
    parse_specifier,
)

__all__ = [
    "LATEST",
    "ArchiveConfig",
    "AssetDescriptor",
    "Exact",
    "InstallResult",
    "Latest",
    "LatestInMajor",
    "LatestInMajorMinor",
    "PlatformTriple",
    "ReleaseDescriptor",
    "ReleaseIndex",
    "ResolvedArchive",
    "SemanticVersion",
    "VersionSpecifier",
    "parse_specifier",
]
