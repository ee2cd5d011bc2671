"""
Defines custom exceptions for the library so callers can tell which stage of
the resolve, download and extract pipeline failed.
"""


class PgArchiveError(Exception):
    """Base exception for all application-specific errors."""


class InvalidVersionSpecifier(PgArchiveError, ValueError):
    """Raised when a version specifier string cannot be parsed."""


class VersionNotFound(PgArchiveError):
    """Raised when no release in the index satisfies the requested version."""


class NoReleasesAvailable(PgArchiveError):
    """Raised when the release index has no selectable releases at all."""


class RegistryUnreachable(PgArchiveError):
    """Raised when the release registry cannot be reached after all retries."""


class RegistryMalformed(PgArchiveError):
    """Raised when the release registry returns a response that cannot be parsed."""


class UnsupportedPlatform(PgArchiveError):
    """Raised when a release has no asset for the requested platform."""


class DownloadFailed(PgArchiveError):
    """Raised when an asset download fails at the network level."""


class IntegrityMismatch(PgArchiveError):
    """Raised when a downloaded payload does not match its published digest."""

    def __init__(self, message: str, expected: str = "", actual: str = ""):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class DestinationUnavailable(PgArchiveError):
    """Raised when the extraction directory does not exist and cannot be created."""


class UnsupportedArchiveFormat(PgArchiveError):
    """Raised when the payload is not a recognised archive format."""


class UnsafeArchiveEntry(PgArchiveError):
    """
    Raised when an archive entry would be written outside the destination
    directory, or is a special file that must never be extracted.
    """

    def __init__(self, message: str, entry: str = ""):
        super().__init__(message)
        self.entry = entry


class CacheConflict(PgArchiveError):
    """Raised when a cache key is written twice with different content."""


class DeadlineExceeded(PgArchiveError):
    """Raised when the caller-supplied deadline expires at an I/O boundary."""


class OperationCancelled(PgArchiveError):
    """Raised when the caller's cancellation signal is set at an I/O boundary."""


class ConfigurationError(PgArchiveError):
    """Raised for issues related to configuration loading or validation."""
