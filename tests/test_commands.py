"""Tests for command-line builders for extracted programs."""

from pathlib import Path

import pytest

from pg_archive.commands import CommandBuilder, PgWalDumpBuilder
from pg_archive.models.platform import PlatformTriple
from pg_archive.models.release import InstallResult
from pg_archive.models.version import SemanticVersion


def test_builder_translates_flags_in_order():
    command = (
        CommandBuilder("initdb", Path("/opt/pg/bin"))
        .flag("pgdata", "/var/lib/pg")
        .flag("U", "postgres")
        .flag("no_sync")
        .flag("debug", False)
        .flag("locale", None)
        .env("PGPASSWORD", "secret")
        .build()
    )
    assert command.argv == [
        str(Path("/opt/pg/bin") / "initdb"),
        "--pgdata",
        "/var/lib/pg",
        "-U",
        "postgres",
        "--no-sync",
    ]
    assert command.env == {"PGPASSWORD": "secret"}


def test_program_without_directory():
    assert CommandBuilder("psql").flag("version").build().argv == ["psql", "--version"]


def test_program_name_is_required():
    with pytest.raises(ValueError):
        CommandBuilder()


def test_pg_waldump_builder():
    command = (
        PgWalDumpBuilder()
        .env("PGDATABASE", "database")
        .flag("backup_details")
        .flag("block", "block")
        .flag("follow")
        .flag("save_fullpage", "save_fullpage")
        .build()
    )
    assert command.to_command_string() == (
        'PGDATABASE="database" "pg_waldump" "--bkp-details" "--block" "block" '
        '"--follow" "--save-fullpage" "save_fullpage"'
    )


def test_builder_from_install_result(tmp_path):
    result = InstallResult(
        version=SemanticVersion(16, 4, 0),
        platform=PlatformTriple("linux", "x86_64", "gnu"),
        hash="0" * 64,
        verified=True,
        destination=tmp_path,
        files=[],
    )
    command = PgWalDumpBuilder.from_install(result).flag("path", tmp_path / "wal").build()
    assert command.argv == [str(tmp_path / "bin" / "pg_waldump"), "--path", str(tmp_path / "wal")]
    assert CommandBuilder.from_install(result, "pg_ctl").get_program_path() == str(
        tmp_path / "bin" / "pg_ctl"
    )
