"""
Console script for ``pg-archive``.

Library errors that escape a command are rendered as a suggestions panel; an
interrupted install or download exits with status 130.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from pg_archive.cli.app import app
from pg_archive.cli.formatters import format_error_with_suggestions
from pg_archive.exceptions import OperationCancelled, PgArchiveError

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

log = logging.getLogger("pg_archive")


def _use_utf8_streams() -> None:
    # Windows consoles default to a legacy code page; table glyphs need UTF-8
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass


def main() -> None:
    if os.name == "nt":
        _use_utf8_streams()

    console = Console(stderr=True)
    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError, OperationCancelled):
        console.print("\n[yellow]Interrupted; partial downloads were removed.[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except PgArchiveError as e:
        console.print(format_error_with_suggestions(e))
        sys.exit(EXIT_FAILURE)
    except Exception as e:
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        log.debug("Full traceback:", exc_info=True)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
