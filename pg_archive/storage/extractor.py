"""
Unpacks verified archives into a destination directory.

Every entry is checked before anything is written: names are canonicalized
and must stay inside the destination, links must point inside it, and
special files are refused. Whatever one call created is removed again if the
extraction fails part way.
"""

import logging
import os
import re
import shutil
import stat
import tarfile
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import IO, Optional, Union

from pg_archive.exceptions import (
    DestinationUnavailable,
    UnsafeArchiveEntry,
    UnsupportedArchiveFormat,
)
from pg_archive.models.release import ResolvedArchive

log = logging.getLogger(__name__)

_DRIVE_REGEX = re.compile(r"^[A-Za-z]:")


class ArchiveFormat(Enum):
    """Archive container formats recognised from their leading bytes."""

    TAR_GZ = "tar.gz"
    TAR_XZ = "tar.xz"
    TAR_BZ2 = "tar.bz2"
    TAR = "tar"
    ZIP = "zip"


_MAGIC_NUMBERS = (
    (b"\x1f\x8b", ArchiveFormat.TAR_GZ),
    (b"\xfd7zXZ\x00", ArchiveFormat.TAR_XZ),
    (b"BZh", ArchiveFormat.TAR_BZ2),
    (b"PK\x03\x04", ArchiveFormat.ZIP),
    (b"PK\x05\x06", ArchiveFormat.ZIP),
)

_TAR_MODES = {
    ArchiveFormat.TAR_GZ: "r:gz",
    ArchiveFormat.TAR_XZ: "r:xz",
    ArchiveFormat.TAR_BZ2: "r:bz2",
    ArchiveFormat.TAR: "r:",
}


def detect_format(path: Path) -> ArchiveFormat:
    """
    Identifies the archive format from content rather than the file name.

    Raises:
        UnsupportedArchiveFormat: If no known signature matches.
    """
    with path.open("rb") as f:
        header = f.read(512)
    for magic, archive_format in _MAGIC_NUMBERS:
        if header.startswith(magic):
            return archive_format
    if header[257:262] == b"ustar":
        return ArchiveFormat.TAR
    raise UnsupportedArchiveFormat(f"'{path.name}' is not a recognised archive.")


def canonical_entry_path(name: str, strip_components: int = 0) -> Optional[PurePosixPath]:
    """
    Normalizes an archive entry name to a relative path inside the destination.

    Returns None for entries that vanish after stripping leading components.

    Raises:
        UnsafeArchiveEntry: For absolute paths, drive letters, NUL bytes or
            ``..`` segments that climb above the archive root.
    """
    if "\x00" in name:
        raise UnsafeArchiveEntry(f"Archive entry {name!r} contains a NUL byte.", name)
    normalized = name.replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_REGEX.match(normalized):
        raise UnsafeArchiveEntry(f"Archive entry {name!r} is an absolute path.", name)

    parts: list[str] = []
    for part in normalized.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise UnsafeArchiveEntry(
                    f"Archive entry {name!r} escapes the destination.", name
                )
            parts.pop()
            continue
        parts.append(part)

    parts = parts[strip_components:]
    if not parts:
        return None
    return PurePosixPath(*parts)


def _link_stays_inside(link: PurePosixPath, target: str) -> bool:
    """True if a symlink at ``link`` pointing at ``target`` resolves inside the root."""
    normalized = target.replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_REGEX.match(normalized):
        return False
    depth: list[str] = list(link.parent.parts)
    for part in normalized.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not depth:
                return False
            depth.pop()
        else:
            depth.append(part)
    return True


@dataclass(frozen=True)
class PlannedEntry:
    """One archive member after validation, ready to be written."""

    name: str
    relative: PurePosixPath
    kind: str  # "dir", "file", "symlink" or "hardlink"
    mode: Optional[int]
    link_target: Optional[str] = None
    member: Union[tarfile.TarInfo, zipfile.ZipInfo, None] = None


class Extractor:
    """
    Extracts one archive into one destination. Instances are single-use;
    :func:`extract` is the usual entry point.
    """

    def __init__(self, destination: Path, strip_components: int = 0):
        self.destination = Path(destination)
        self.strip_components = strip_components
        self._root: Optional[Path] = None
        self._created: list[Path] = []
        self._written: list[Path] = []
        self._dir_modes: dict[Path, int] = {}
        self._symlinks: list[tuple[Path, PlannedEntry]] = []

    def _prepare_destination(self) -> Path:
        try:
            self.destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DestinationUnavailable(
                f"Cannot create destination '{self.destination}': {e}"
            ) from e
        if not self.destination.is_dir():
            raise DestinationUnavailable(f"Destination '{self.destination}' is not a directory.")
        if not os.access(self.destination, os.W_OK | os.X_OK):
            raise DestinationUnavailable(f"Destination '{self.destination}' is not writable.")
        return self.destination.resolve()

    def extract(self, archive_path: Path) -> list[Path]:
        """
        Validates and writes every entry of ``archive_path``.

        Returns:
            The files and links written, in archive order.
        """
        archive_format = detect_format(archive_path)
        self._root = self._prepare_destination()
        log.info(f"Extracting {archive_path.name} ({archive_format.value}) to {self.destination}")

        try:
            if archive_format is ArchiveFormat.ZIP:
                with zipfile.ZipFile(archive_path) as archive:
                    plan = self._plan(self._zip_entries(archive))
                    self._write_all(plan, lambda entry: archive.open(entry.member))
            else:
                with tarfile.open(archive_path, _TAR_MODES[archive_format]) as archive:
                    plan = self._plan(self._tar_entries(archive))
                    self._write_all(plan, lambda entry: archive.extractfile(entry.member))
        except (tarfile.TarError, zipfile.BadZipFile, EOFError) as e:
            self._cleanup()
            raise UnsupportedArchiveFormat(
                f"'{archive_path.name}' could not be read as {archive_format.value}: {e}"
            ) from e
        except BaseException:
            self._cleanup()
            raise

        log.debug(f"Extracted {len(self._written)} entries to {self.destination}")
        return list(self._written)

    def _tar_entries(self, archive: tarfile.TarFile) -> list[PlannedEntry]:
        entries = []
        for member in archive.getmembers():
            relative = canonical_entry_path(member.name, self.strip_components)
            if relative is None:
                continue
            mode = member.mode & 0o777
            if member.isdir():
                entries.append(PlannedEntry(member.name, relative, "dir", mode, member=member))
            elif member.isreg():
                entries.append(PlannedEntry(member.name, relative, "file", mode, member=member))
            elif member.issym():
                entries.append(
                    PlannedEntry(member.name, relative, "symlink", None, member.linkname, member)
                )
            elif member.islnk():
                entries.append(
                    PlannedEntry(member.name, relative, "hardlink", mode, member.linkname, member)
                )
            else:
                raise UnsafeArchiveEntry(
                    f"Archive entry {member.name!r} is a special file.", member.name
                )
        return entries

    def _zip_entries(self, archive: zipfile.ZipFile) -> list[PlannedEntry]:
        entries = []
        for info in archive.infolist():
            relative = canonical_entry_path(info.filename, self.strip_components)
            if relative is None:
                continue
            unix_mode = info.external_attr >> 16 if info.create_system == 3 else 0
            mode = (unix_mode & 0o777) or None
            if info.is_dir():
                entries.append(PlannedEntry(info.filename, relative, "dir", mode, member=info))
            elif stat.S_ISLNK(unix_mode):
                try:
                    target = archive.read(info).decode("utf-8")
                except UnicodeDecodeError as e:
                    raise UnsafeArchiveEntry(
                        f"Symlink {info.filename!r} has an undecodable target.", info.filename
                    ) from e
                entries.append(
                    PlannedEntry(info.filename, relative, "symlink", None, target, info)
                )
            elif unix_mode and not stat.S_ISREG(unix_mode) and stat.S_IFMT(unix_mode):
                raise UnsafeArchiveEntry(
                    f"Archive entry {info.filename!r} is a special file.", info.filename
                )
            else:
                entries.append(PlannedEntry(info.filename, relative, "file", mode, member=info))
        return entries

    def _plan(self, entries: list[PlannedEntry]) -> list[PlannedEntry]:
        """Rejects the whole archive if any link would leave the destination."""
        seen_files: set[PurePosixPath] = set()
        planned = []
        for entry in entries:
            if entry.kind == "symlink":
                if not entry.link_target or not _link_stays_inside(
                    entry.relative, entry.link_target
                ):
                    raise UnsafeArchiveEntry(
                        f"Symlink {entry.name!r} -> {entry.link_target!r} points outside "
                        "the destination.",
                        entry.name,
                    )
            elif entry.kind == "hardlink":
                target = canonical_entry_path(entry.link_target or "", self.strip_components)
                if target is None or target not in seen_files:
                    raise UnsafeArchiveEntry(
                        f"Hard link {entry.name!r} -> {entry.link_target!r} does not refer "
                        "to an earlier file in the archive.",
                        entry.name,
                    )
                entry = PlannedEntry(
                    entry.name, entry.relative, entry.kind, entry.mode, str(target), entry.member
                )
            if entry.kind in ("file", "hardlink"):
                seen_files.add(entry.relative)
            planned.append(entry)
        return planned

    def _is_inside(self, path: Union[Path, str]) -> bool:
        """True if ``path``, with every symlink on disk followed, lies under the root."""
        assert self._root is not None
        real = Path(os.path.realpath(path))
        return real == self._root or self._root in real.parents

    def _target_path(self, entry: PlannedEntry) -> Path:
        """Resolves the output path and checks it once more against the root."""
        assert self._root is not None
        target = self._root.joinpath(*entry.relative.parts)
        parent = target.parent.resolve()
        if not self._is_inside(parent):
            raise UnsafeArchiveEntry(
                f"Archive entry {entry.name!r} resolves outside the destination.", entry.name
            )
        return parent / target.name

    def _ensure_dir(self, path: Path, entry: PlannedEntry) -> None:
        missing = []
        current = path
        while not current.exists() and not current.is_symlink():
            missing.append(current)
            current = current.parent
        for directory in reversed(missing):
            if not self._is_inside(directory.parent):
                raise UnsafeArchiveEntry(
                    f"Archive entry {entry.name!r} would create '{directory}' outside "
                    "the destination.",
                    entry.name,
                )
            directory.mkdir()
            self._created.append(directory)

    def _clear_slot(self, target: Path, entry: PlannedEntry) -> None:
        """Removes an existing file or link so writes never follow it."""
        if target.is_symlink() or target.is_file():
            target.unlink()
        elif target.exists():
            raise UnsafeArchiveEntry(
                f"Archive entry {entry.name!r} would replace the directory '{target}'.",
                entry.name,
            )

    def _write_all(self, plan: list[PlannedEntry], open_member) -> None:
        assert self._root is not None
        for entry in plan:
            self._ensure_dir(self._root.joinpath(*entry.relative.parts[:-1]), entry)
            target = self._target_path(entry)

            if entry.kind == "dir":
                if not self._is_inside(target):
                    raise UnsafeArchiveEntry(
                        f"Archive entry {entry.name!r} resolves outside the destination.",
                        entry.name,
                    )
                if target.exists() and not target.is_dir():
                    raise UnsafeArchiveEntry(
                        f"Archive entry {entry.name!r} would replace the file '{target}'.",
                        entry.name,
                    )
                self._ensure_dir(target, entry)
                if entry.mode is not None:
                    self._dir_modes[target] = entry.mode
                continue

            if entry.kind == "file":
                self._clear_slot(target, entry)
                self._write_file(target, open_member(entry), entry.mode)
            elif entry.kind == "symlink":
                self._write_symlink(target, entry)
            else:
                self._write_hardlink(target, entry)
            self._written.append(target)

        self._verify_symlinks()

        # Directory modes last so read-only directories do not block their children
        for directory in sorted(self._dir_modes, key=lambda p: len(p.parts), reverse=True):
            os.chmod(directory, self._dir_modes[directory] | stat.S_IRWXU)

    def _write_file(self, target: Path, source: Optional[IO[bytes]], mode: Optional[int]) -> None:
        self._created.append(target)
        with open(target, "wb") as out:
            if source is not None:
                with source:
                    shutil.copyfileobj(source, out)
        if mode is not None:
            os.chmod(target, mode)

    def _write_symlink(self, target: Path, entry: PlannedEntry) -> None:
        assert entry.link_target is not None
        if not self._is_inside(target.parent / entry.link_target):
            raise UnsafeArchiveEntry(
                f"Symlink {entry.name!r} -> {entry.link_target!r} resolves outside "
                "the destination.",
                entry.name,
            )
        self._clear_slot(target, entry)
        self._created.append(target)
        os.symlink(entry.link_target, target)
        self._symlinks.append((target, entry))

    def _verify_symlinks(self) -> None:
        """A later link can redirect an earlier one, so every link is checked again at the end."""
        for link, entry in self._symlinks:
            if not self._is_inside(link):
                raise UnsafeArchiveEntry(
                    f"Symlink {entry.name!r} -> {entry.link_target!r} resolves outside "
                    "the destination.",
                    entry.name,
                )

    def _write_hardlink(self, target: Path, entry: PlannedEntry) -> None:
        assert self._root is not None and entry.link_target is not None
        source = self._root.joinpath(*PurePosixPath(entry.link_target).parts)
        real_source = Path(os.path.realpath(source))
        if (
            source.is_symlink()
            or not self._is_inside(real_source)
            or not real_source.is_file()
            or real_source == target
        ):
            raise UnsafeArchiveEntry(
                f"Hard link {entry.name!r} -> {entry.link_target!r} does not refer to a "
                "regular file inside the destination.",
                entry.name,
            )
        self._clear_slot(target, entry)
        self._created.append(target)
        try:
            os.link(real_source, target, follow_symlinks=False)
        except OSError:
            shutil.copy2(real_source, target, follow_symlinks=False)

    def _cleanup(self) -> None:
        """Best-effort removal of everything this call created."""
        for path in reversed(self._created):
            try:
                if path.is_symlink() or path.is_file():
                    path.unlink()
                elif path.is_dir():
                    shutil.rmtree(path)
            except OSError as e:
                log.error(f"Cleanup after failed extraction could not remove '{path}': {e}")
        self._created.clear()
        self._written.clear()
        self._symlinks.clear()


def extract(
    archive: Union[ResolvedArchive, Path, str],
    destination: Union[Path, str],
    strip_components: int = 0,
) -> list[Path]:
    """
    Extracts ``archive`` into ``destination``.

    Args:
        archive: A resolved archive or a path to an archive file.
        destination: Target directory; created if missing.
        strip_components: Leading path segments to drop from every entry.

    Returns:
        The files and links written.

    Raises:
        DestinationUnavailable: If the destination cannot be used.
        UnsupportedArchiveFormat: If the payload is not a readable archive.
        UnsafeArchiveEntry: If any entry would escape the destination.
    """
    path = archive.path if isinstance(archive, ResolvedArchive) else Path(archive)
    return Extractor(Path(destination), strip_components).extract(path)
