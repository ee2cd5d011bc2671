"""
Semantic versions of published releases and the specifiers used to request them.
"""

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Union

from pg_archive.exceptions import InvalidVersionSpecifier

_VERSION_REGEX = re.compile(
    r"^v?(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)

_LATEST_ALIASES = ("", "*", "latest")


@total_ordering
@dataclass(frozen=True)
class SemanticVersion:
    """A release version ordered by semver precedence rules."""

    major: int
    minor: int = 0
    patch: int = 0
    prerelease: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "SemanticVersion":
        """
        Parses a release tag such as ``16.4.0``, ``v16.4.0`` or ``17.0.0-rc1``.

        Missing minor/patch components default to zero and build metadata is
        ignored.

        Raises:
            ValueError: If the text is not a version.
        """
        match = _VERSION_REGEX.match(text.strip())
        if not match:
            raise ValueError(f"Not a semantic version: {text!r}")
        pre = match.group("pre")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor") or 0),
            patch=int(match.group("patch") or 0),
            prerelease=tuple(pre.split(".")) if pre else (),
        )

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def _sort_key(self) -> tuple:
        # A release sorts above all of its pre-releases.
        if not self.prerelease:
            pre_key: tuple = (1,)
        else:
            pre_key = (
                0,
                tuple(
                    (0, int(part), "") if part.isdigit() else (1, 0, part)
                    for part in self.prerelease
                ),
            )
        return (self.major, self.minor, self.patch, pre_key)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        return text


@dataclass(frozen=True)
class Exact:
    """Requests exactly one version."""

    version: SemanticVersion

    def matches(self, version: SemanticVersion) -> bool:
        return version == self.version

    def __str__(self) -> str:
        return f"={self.version}"


@dataclass(frozen=True)
class Latest:
    """Requests the newest available release."""

    def matches(self, version: SemanticVersion) -> bool:
        return True

    def __str__(self) -> str:
        return "latest"


@dataclass(frozen=True)
class LatestInMajor:
    """Requests the newest release of one major version line."""

    major: int

    def matches(self, version: SemanticVersion) -> bool:
        return version.major == self.major

    def __str__(self) -> str:
        return str(self.major)


@dataclass(frozen=True)
class LatestInMajorMinor:
    """Requests the newest patch release of one major.minor line."""

    major: int
    minor: int

    def matches(self, version: SemanticVersion) -> bool:
        return version.major == self.major and version.minor == self.minor

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


VersionSpecifier = Union[Exact, Latest, LatestInMajor, LatestInMajorMinor]


def parse_specifier(text: str) -> VersionSpecifier:
    """
    Parses user input into a version specifier.

    ``latest``, ``*`` or an empty string select the newest release, ``16``
    the newest 16.x, ``16.4`` the newest 16.4.x and ``16.4.0`` (optionally
    written ``=16.4.0``, ``v16.4.0`` or with a pre-release suffix) one exact
    version.

    Raises:
        InvalidVersionSpecifier: If the text matches none of these forms.
    """
    raw = text.strip()
    if raw.lower() in _LATEST_ALIASES:
        return Latest()

    candidate = raw[1:].strip() if raw.startswith("=") else raw
    match = _VERSION_REGEX.match(candidate)
    if not match:
        raise InvalidVersionSpecifier(f"Invalid version specifier: {text!r}")

    major = int(match.group("major"))
    minor = match.group("minor")
    patch = match.group("patch")
    if match.group("pre") and patch is None:
        raise InvalidVersionSpecifier(
            f"Pre-release specifiers must name a full version: {text!r}"
        )
    if minor is None:
        return LatestInMajor(major)
    if patch is None:
        return LatestInMajorMinor(major, int(minor))
    return Exact(SemanticVersion.parse(candidate))


LATEST = Latest()
V17 = LatestInMajor(17)
V16 = LatestInMajor(16)
V15 = LatestInMajor(15)
V14 = LatestInMajor(14)
V13 = LatestInMajor(13)
