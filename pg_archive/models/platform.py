"""
Platform triples identifying which archive applies to a host.
"""

import platform as _host
from dataclasses import dataclass
from typing import Optional

# Machine names reported by different OSes, mapped to registry architecture names
ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv8": "aarch64",
    "i386": "i686",
    "i586": "i686",
    "x86": "i686",
    "ppc64le": "powerpc64le",
}

OS_ALIASES = {
    "macos": "darwin",
    "osx": "darwin",
    "apple": "darwin",
    "win32": "windows",
}

# Vendor segments that appear in target triples but carry no meaning here
_VENDORS = {"unknown", "pc", "apple"}


def normalize_arch(arch: str) -> str:
    arch = arch.strip().lower()
    return ARCH_ALIASES.get(arch, arch)


def normalize_os(os_name: str) -> str:
    os_name = os_name.strip().lower()
    return OS_ALIASES.get(os_name, os_name)


@dataclass(frozen=True)
class PlatformTriple:
    """An (OS, architecture, ABI) triple. ``abi`` is None where it is irrelevant."""

    os: str
    arch: str
    abi: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "os", normalize_os(self.os))
        object.__setattr__(self, "arch", normalize_arch(self.arch))
        if self.abi is not None:
            object.__setattr__(self, "abi", self.abi.strip().lower() or None)

    @classmethod
    def from_target(cls, target: str) -> "PlatformTriple":
        """
        Parses a Rust-style target triple as used in registry asset names.

        Examples:
            ``x86_64-unknown-linux-gnu`` -> (linux, x86_64, gnu)
            ``aarch64-apple-darwin``     -> (darwin, aarch64, None)
            ``x86_64-pc-windows-msvc``   -> (windows, x86_64, msvc)

        Raises:
            ValueError: If the text does not look like a target triple.
        """
        parts = [part for part in target.strip().lower().split("-") if part]
        if len(parts) < 2:
            raise ValueError(f"Not a target triple: {target!r}")
        arch, rest = parts[0], parts[1:]
        if rest[0] in _VENDORS and len(rest) > 1:
            rest = rest[1:]
        if len(rest) == 1:
            return cls(os=rest[0], arch=arch)
        if len(rest) == 2:
            return cls(os=rest[0], arch=arch, abi=rest[1])
        raise ValueError(f"Not a target triple: {target!r}")

    @classmethod
    def parse(cls, text: str) -> "PlatformTriple":
        """
        Parses either a target triple or the ``os-arch[-abi]`` form produced
        by ``str()``.
        """
        parts = text.strip().lower().split("-")
        if len(parts) in (2, 3) and normalize_os(parts[0]) in (
            "linux",
            "darwin",
            "windows",
            "freebsd",
        ):
            return cls(os=parts[0], arch=parts[1], abi=parts[2] if len(parts) == 3 else None)
        return cls.from_target(text)

    @classmethod
    def current(cls) -> "PlatformTriple":
        """Detects the host platform."""
        os_name = normalize_os(_host.system())
        arch = normalize_arch(_host.machine())
        abi: Optional[str] = None
        if os_name == "linux":
            libc, _ = _host.libc_ver()
            abi = "gnu" if libc == "glibc" else "musl"
        elif os_name == "windows":
            abi = "msvc"
        return cls(os=os_name, arch=arch, abi=abi)

    def __str__(self) -> str:
        if self.abi:
            return f"{self.os}-{self.arch}-{self.abi}"
        return f"{self.os}-{self.arch}"
