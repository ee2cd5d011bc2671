"""
pg-archive: resolve, download, verify and unpack PostgreSQL binary archives.

Typical use::

    import pg_archive

    result = await pg_archive.install(pg_archive.V16, "/opt/postgresql")

The :mod:`pg_archive.blocking` module offers the same operations without an
event loop.
"""

__version__ = "0.17.4"

from .core.pipeline import ArchivePipeline, get_archive, install  # noqa: E402
from .exceptions import (  # noqa: E402
    CacheConflict,
    ConfigurationError,
    DeadlineExceeded,
    DestinationUnavailable,
    DownloadFailed,
    IntegrityMismatch,
    InvalidVersionSpecifier,
    NoReleasesAvailable,
    OperationCancelled,
    PgArchiveError,
    RegistryMalformed,
    RegistryUnreachable,
    UnsafeArchiveEntry,
    UnsupportedArchiveFormat,
    UnsupportedPlatform,
    VersionNotFound,
)
from .models import (  # noqa: E402
    LATEST,
    ArchiveConfig,
    Exact,
    InstallResult,
    Latest,
    LatestInMajor,
    LatestInMajorMinor,
    PlatformTriple,
    ResolvedArchive,
    SemanticVersion,
    parse_specifier,
)
from .models.version import V13, V14, V15, V16, V17  # noqa: E402
from .storage.extractor import extract  # noqa: E402
from .utils.deadline import Deadline  # noqa: E402

__all__ = [
    "LATEST",
    "V13",
    "V14",
    "V15",
    "V16",
    "V17",
    "ArchiveConfig",
    "ArchivePipeline",
    "CacheConflict",
    "ConfigurationError",
    "Deadline",
    "DeadlineExceeded",
    "DestinationUnavailable",
    "DownloadFailed",
    "Exact",
    "InstallResult",
    "IntegrityMismatch",
    "InvalidVersionSpecifier",
    "Latest",
    "LatestInMajor",
    "LatestInMajorMinor",
    "NoReleasesAvailable",
    "OperationCancelled",
    "PgArchiveError",
    "PlatformTriple",
    "RegistryMalformed",
    "RegistryUnreachable",
    "ResolvedArchive",
    "SemanticVersion",
    "UnsafeArchiveEntry",
    "UnsupportedArchiveFormat",
    "UnsupportedPlatform",
    "VersionNotFound",
    "extract",
    "get_archive",
    "install",
    "parse_specifier",
]
