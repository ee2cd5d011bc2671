"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from pg_archive import __version__
from pg_archive.core.locator import locate
from pg_archive.core.pipeline import ArchivePipeline, as_platform, as_specifier
from pg_archive.core.resolver import resolve
from pg_archive.exceptions import PgArchiveError, UnsupportedPlatform
from pg_archive.models.config import ArchiveConfig
from pg_archive.models.platform import PlatformTriple
from pg_archive.storage.cache import ArchiveCache
from pg_archive.storage.config_manager import ConfigManager, get_config_dir
from pg_archive.utils.deadline import Deadline

from .formatters import (
    format_error_with_suggestions,
    print_cache_entries,
    print_install_summary,
    print_releases_table,
    print_resolution,
)

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("pg_archive")

app = typer.Typer(
    name="pg-archive",
    help=(
        "Resolve, download, verify and unpack PostgreSQL binary archives. Use"
        " 'pg-archive <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _config_file(ctx: typer.Context) -> Path:
    return (ctx.obj or {}).get("config_file", CONFIG_FILE)


def _load_config(ctx: typer.Context, cli_options: Optional[dict[str, Any]] = None) -> ArchiveConfig:
    try:
        return ConfigManager(_config_file(ctx)).load_config(cli_options)
    except PgArchiveError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


def _run(coro):
    """Runs a pipeline coroutine, rendering library errors as a panel."""
    try:
        return asyncio.run(coro)
    except PgArchiveError as e:
        console.print(format_error_with_suggestions(e))
        log.debug("Full traceback:", exc_info=True)
        raise typer.Exit(code=1) from e


def _parse_platform(value: Optional[str]) -> Optional[PlatformTriple]:
    try:
        return as_platform(value)
    except ValueError as e:
        console.print(f"[red]✗ Invalid platform '{value}': {e}[/red]")
        raise typer.Exit(code=1) from e


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (debug output).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        help=f"Path to the configuration file (default: {CONFIG_FILE}).",
    ),
):
    """PostgreSQL archive CLI"""
    if version:
        console.print(f"[bold]pg-archive[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "DEBUG" if verbose >= 1 else "INFO"
    logging.getLogger("pg_archive").setLevel(log_level)

    ctx.obj = {"config_file": config_file or CONFIG_FILE}

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    ctx: typer.Context,
    registry_url: Optional[str] = typer.Option(
        None, "--registry-url", help="Releases endpoint or GitHub repository URL."
    ),
    cache_dir: Optional[Path] = typer.Option(
        None, "--cache-dir", help="Where verified archives are cached."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Write a configuration file with default settings."""
    config_file = _config_file(ctx)
    if (
        config_file.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        key: value
        for key, value in {"registry_url": registry_url, "cache_dir": cache_dir}.items()
        if value is not None
    }
    try:
        ConfigManager(config_file).save_new_config(settings)
    except PgArchiveError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e
    console.print(f"[bold green]✓ Configuration saved to '{config_file}'[/bold green]")


@app.command()
def releases(
    ctx: typer.Context,
    prerelease: bool = typer.Option(
        False, "--prerelease", help="Include pre-releases in the listing."
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-n", help="Show only the newest N releases."
    ),
):
    """List the releases published by the registry."""
    config = _load_config(ctx)
    index = _run(ArchivePipeline(config).fetch_index())
    print_releases_table(console, index, prerelease or config.include_prerelease, limit)


@app.command(name="resolve")
def resolve_command(
    ctx: typer.Context,
    specifier: str = typer.Argument("latest", help="Version specifier, e.g. 16 or 16.4.0."),
    platform: Optional[str] = typer.Option(
        None, "--platform", "-p", help="Target platform (default: this host)."
    ),
    prerelease: bool = typer.Option(
        False, "--prerelease", help="Allow pre-releases to be selected."
    ),
):
    """Show which release and asset a version specifier resolves to."""
    cli_options = {"include_prerelease": True} if prerelease else None
    config = _load_config(ctx, cli_options)
    target = _parse_platform(platform) or PlatformTriple.current()

    try:
        requested = as_specifier(specifier)
    except PgArchiveError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e

    pipeline = ArchivePipeline(config)
    index = _run(pipeline.fetch_index())
    try:
        release = resolve(requested, index, config.include_prerelease)
    except PgArchiveError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e

    try:
        asset = locate(release, target)
    except UnsupportedPlatform as e:
        log.debug(str(e))
        asset = None
    else:
        asset = _run(pipeline.resolve_digest(asset))
    print_resolution(console, release, asset, target)


@app.command()
def install(
    ctx: typer.Context,
    specifier: str = typer.Argument(..., help="Version specifier, e.g. latest, 16 or 16.4.0."),
    destination: Path = typer.Argument(..., help="Directory to extract PostgreSQL into."),
    platform: Optional[str] = typer.Option(
        None, "--platform", "-p", help="Target platform (default: this host)."
    ),
    no_cache: bool = typer.Option(
        False, "--no-cache", help="Neither read nor populate the archive cache."
    ),
    strip: Optional[int] = typer.Option(
        None, "--strip", help="Leading path components to drop from archive entries."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Overall deadline for network operations, in seconds."
    ),
    prerelease: bool = typer.Option(
        False, "--prerelease", help="Allow pre-releases to be selected."
    ),
):
    """Download, verify and extract a PostgreSQL release."""
    cli_options = {
        key: value
        for key, value in {
            "use_cache": False if no_cache else None,
            "strip_components": strip,
            "include_prerelease": True if prerelease else None,
        }.items()
        if value is not None
    }
    config = _load_config(ctx, cli_options)
    target = _parse_platform(platform)

    console.print(f"[bold cyan]Installing PostgreSQL '{specifier}'...[/bold cyan]")
    start_time = time.monotonic()
    pipeline = ArchivePipeline(config)
    result = _run(pipeline.install(specifier, destination, target, Deadline(timeout)))
    print_install_summary(console, result, time.monotonic() - start_time)


@app.command(name="cache")
def cache_command(ctx: typer.Context):
    """List the archives held in the cache."""
    config = _load_config(ctx)
    cache = ArchiveCache(config.cache_dir)
    console.print(f"[dim]Cache directory: {cache.cache_dir}[/dim]")
    print_cache_entries(console, cache.entries())


@app.command(name="clear-cache")
def clear_cache(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Bypass the confirmation prompt.",
    ),
):
    """Remove every archive from the cache."""
    config = _load_config(ctx)
    cache = ArchiveCache(config.cache_dir)
    if not force and not typer.confirm(
        f"Remove all cached archives in '{cache.cache_dir}'?"
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    entries_count = len(cache.entries())
    console.print("[cyan]Clearing archive cache...[/cyan]")
    if cache.clear():
        console.print(
            f"[green]✓ Cache cleared successfully ({entries_count} entries removed"
            ").[/green]"
        )
    else:
        console.print("[red]✗ Failed to clear cache.[/red]")
        raise typer.Exit(code=1)
