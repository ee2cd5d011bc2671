"""
Turns typed flags into argument and environment lists for the PostgreSQL
utility programs found in an extracted archive.

Builders only translate; they never validate flag values or spawn processes.
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from pg_archive.models.release import InstallResult

FlagValue = Union[bool, str, int, os.PathLike, None]


@dataclass(frozen=True)
class Command:
    """A ready-to-spawn command line and the extra environment it needs."""

    argv: list[str]
    env: dict[str, str] = field(default_factory=dict)

    def to_command_string(self) -> str:
        """Renders the command as ``KEY="value" "program" "--arg" ...``."""
        parts = [f'{key}="{value}"' for key, value in self.env.items()]
        parts.extend(f'"{arg}"' for arg in self.argv)
        return " ".join(parts)

    def __str__(self) -> str:
        return shlex.join(self.argv)


class CommandBuilder:
    """
    Generic builder for one PostgreSQL program.

    Flags are emitted in the order they were set. ``True`` emits the bare
    flag, ``False``/``None`` emit nothing, and any other value is passed as
    the following argument. Single-letter names become ``-x``; longer names
    become ``--name`` with underscores turned into dashes.

    Usage:
        command = (
            CommandBuilder("initdb", install.destination / "bin")
            .flag("pgdata", "/var/lib/pg")
            .flag("auth", "trust")
            .env("PGPASSWORD", "secret")
            .build()
        )
    """

    program = ""

    def __init__(self, program: Optional[str] = None, program_dir: Optional[Path] = None):
        if program:
            self.program = program
        if not self.program:
            raise ValueError("A program name is required.")
        self._program_dir = Path(program_dir) if program_dir is not None else None
        self._flags: list[tuple[str, FlagValue]] = []
        self._envs: dict[str, str] = {}

    @classmethod
    def from_install(cls, result: InstallResult, program: Optional[str] = None):
        """Creates a builder pointing at the ``bin`` directory of an install."""
        return cls(program, result.destination / "bin")

    def program_dir(self, path: Union[Path, str]) -> "CommandBuilder":
        self._program_dir = Path(path)
        return self

    def flag(self, name: str, value: FlagValue = True) -> "CommandBuilder":
        self._flags.append((name, value))
        return self

    def env(self, key: str, value: str) -> "CommandBuilder":
        self._envs[key] = str(value)
        return self

    def get_program_path(self) -> str:
        if self._program_dir is None:
            return self.program
        return str(self._program_dir / self.program)

    def _option_name(self, name: str) -> str:
        if name.startswith("-"):
            return name
        if len(name) == 1:
            return f"-{name}"
        return f"--{name.replace('_', '-')}"

    def get_args(self) -> list[str]:
        args: list[str] = []
        for name, value in self._flags:
            if value is None or value is False:
                continue
            args.append(self._option_name(name))
            if value is not True:
                args.append(os.fspath(value) if isinstance(value, os.PathLike) else str(value))
        return args

    def get_envs(self) -> dict[str, str]:
        return dict(self._envs)

    def build(self) -> Command:
        return Command(argv=[self.get_program_path(), *self.get_args()], env=self.get_envs())


class PgWalDumpBuilder(CommandBuilder):
    """``pg_waldump`` decodes and displays PostgreSQL write-ahead logs."""

    program = "pg_waldump"

    # Python-friendly names for options whose spelling differs on the command line
    OPTION_NAMES = {
        "backup_details": "--bkp-details",
        "save_fullpage": "--save-fullpage",
    }

    def __init__(self, program_dir: Optional[Path] = None):
        super().__init__(None, program_dir)

    @classmethod
    def from_install(cls, result: InstallResult, program: Optional[str] = None):
        return cls(result.destination / "bin")

    def _option_name(self, name: str) -> str:
        return self.OPTION_NAMES.get(name) or super()._option_name(name)
