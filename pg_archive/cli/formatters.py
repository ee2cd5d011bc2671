"""
Functions for formatting and displaying data in the console using Rich.
"""

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pg_archive.models.platform import PlatformTriple
from pg_archive.models.release import (
    AssetDescriptor,
    InstallResult,
    ReleaseDescriptor,
    ReleaseIndex,
)
from pg_archive.storage.cache import CacheEntry
from pg_archive.utils.formatting import (
    format_date,
    format_duration,
    format_size,
    short_digest,
)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "InvalidVersionSpecifier": [
            "• Use 'latest', a major version ('16'), 'major.minor' ('16.4') or an exact version.",
        ],
        "VersionNotFound": [
            "• Run `pg-archive releases` to list the published versions.",
            "• Pre-releases are only selected with --prerelease or an exact version.",
        ],
        "NoReleasesAvailable": [
            "• The registry returned no usable releases.",
            "• Check that the registry URL points at a PostgreSQL binaries repository.",
        ],
        "RegistryUnreachable": [
            "• Check your internet connection.",
            "• GitHub may be rate limiting you. Set GITHUB_TOKEN to raise the limit.",
            "• Please try again in a few minutes.",
        ],
        "RegistryMalformed": [
            "• The registry answered with something that is not a release list.",
            "• Verify the registry URL in your configuration.",
        ],
        "UnsupportedPlatform": [
            "• Pick one of the listed platforms with --platform.",
            "• Older releases may not be built for your architecture.",
        ],
        "DownloadFailed": [
            "• A network connection issue occurred.",
            "• Increase the timeout with --timeout if your connection is slow.",
        ],
        "IntegrityMismatch": [
            "• The downloaded archive does not match its published digest.",
            "• Nothing was extracted. Retry; if it persists, report it upstream.",
        ],
        "DestinationUnavailable": [
            "• Check that the destination path is a writable directory.",
        ],
        "UnsafeArchiveEntry": [
            "• The archive tried to write outside the destination and was rejected.",
            "• Nothing from this archive was kept.",
        ],
        "UnsupportedArchiveFormat": [
            "• The payload is not a tar or zip archive.",
        ],
        "CacheConflict": [
            "• The cache holds different content for this version.",
            "• Run `pg-archive clear-cache` and try again.",
        ],
        "DeadlineExceeded": [
            "• The operation ran out of time. Raise --timeout.",
        ],
        "ConfigurationError": [
            "• Fix or remove the configuration file and try again.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -v for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_releases_table(
    console: Console, index: ReleaseIndex, include_prerelease: bool, limit: int | None
):
    """Displays the published releases, newest first."""
    releases = [
        r for r in index.newest_first() if include_prerelease or not r.is_prerelease
    ]
    if limit:
        releases = releases[:limit]
    if not releases:
        console.print("[yellow]No releases found.[/yellow]")
        return

    table = Table(title="Published PostgreSQL Releases", box=box.SIMPLE_HEAVY)
    table.add_column("Version", style="bold cyan")
    table.add_column("Published", style="dim")
    table.add_column("Platforms", justify="right", style="green")
    for release in releases:
        version = str(release.version)
        if release.is_prerelease:
            version += " [yellow](pre)[/yellow]"
        table.add_row(version, format_date(release.published_at), str(len(release.assets)))
    console.print(table)


def print_resolution(
    console: Console,
    release: ReleaseDescriptor,
    asset: AssetDescriptor | None,
    platform: PlatformTriple | None,
):
    """Displays which release and asset a specifier resolves to."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("Version:", f"[green]{release.version}[/green]")
    table.add_row("Published:", format_date(release.published_at))
    if asset is not None:
        table.add_row("Platform:", str(asset.platform))
        table.add_row("Asset:", asset.name)
        table.add_row("Size:", format_size(asset.size))
        table.add_row("Digest:", short_digest(asset.expected_hash))
    else:
        table.add_row("Platform:", f"[yellow]{platform} (not available)[/yellow]")
    console.print(Panel(table, title="[bold green]Resolved[/bold green]", border_style="green"))


def print_install_summary(console: Console, result: InstallResult, duration_s: float):
    """Displays the outcome of an install."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column()
    table.add_row("Version:", f"[green]{result.version}[/green]")
    table.add_row("Platform:", str(result.platform))
    table.add_row("Destination:", str(result.destination))
    table.add_row("Files:", str(len(result.files)))
    table.add_row(
        "Digest:",
        f"{short_digest(result.hash)} "
        + ("[green]✓ verified[/green]" if result.verified else "[yellow]⚠ unverified[/yellow]"),
    )
    table.add_row("Source:", "cache" if result.from_cache else "download")
    table.add_row("Duration:", format_duration(duration_s))
    console.print(
        Panel(
            table,
            title="[bold green]✓ PostgreSQL Installed[/bold green]",
            border_style="green",
            expand=False,
        )
    )


def print_cache_entries(console: Console, entries: list[CacheEntry]):
    """Displays the archives currently held in the cache."""
    if not entries:
        console.print("[dim]The cache is empty.[/dim]")
        return
    table = Table(title="Cached Archives")
    table.add_column("Version", style="cyan")
    table.add_column("Platform")
    table.add_column("Digest", style="dim")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Stored", style="dim")
    for entry in entries:
        size = entry.path.stat().st_size if entry.path.is_file() else 0
        table.add_row(
            entry.version,
            entry.platform,
            short_digest(entry.hash),
            format_size(size),
            format_date(entry.stored_at),
        )
    console.print(table)
