"""Typer CLI for the cache pull step.

Provides the ``cache-pull`` command:

- ``cache-pull [pull]`` resolves, downloads, and restores the build cache
  (``pull`` is the default command and may be omitted)
- ``cache-pull version`` prints the package version

Configuration comes from the environment (``cache_api_url``,
``is_debug_mode``, ``cache_*``); options given on the command line win.

Exit codes: 0 on success or when no cache is configured, 1 when the pull fails,
2 on invalid configuration.

Example:
    $ cache_api_url=https://cache.example.com/api cache-pull
    $ cache-pull pull --api-url https://cache.example.com/api --debug
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional, Sequence

import typer
from rich.console import Console

from . import __version__
from .errors import CachePullError, ConfigError
from .io.filesystem import format_bytes
from .logging_utils import setup_logging
from .pipeline import pull_cache
from .settings import load_settings

__all__ = ["app", "main"]

_DEFAULT_SUBCOMMAND = "pull"
_KNOWN_SUBCOMMANDS = {"pull", "version"}
_ROOT_FLAGS = {"--help", "--version", "-V", "--install-completion", "--show-completion"}

_console = Console()
_err_console = Console(stderr=True)

app = typer.Typer(
    name="cache-pull",
    help="Download the build cache archive and restore it into the working directory.",
    add_completion=False,
)


def _normalize_args(args: Sequence[str]) -> List[str]:
    """Insert the default ``pull`` subcommand when callers omit it."""

    normalized = list(args)
    if any(token in _ROOT_FLAGS for token in normalized[:1]):
        return normalized
    if normalized and normalized[0] in _KNOWN_SUBCOMMANDS:
        return normalized
    return [_DEFAULT_SUBCOMMAND, *normalized]


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cache-pull {__version__}")
        raise typer.Exit(0)


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Build cache pull step."""


@app.command()
def pull(
    api_url: Optional[str] = typer.Option(
        None,
        "--api-url",
        help="Cache API endpoint (default: $cache_api_url)",
    ),
    debug: Optional[bool] = typer.Option(
        None,
        "--debug/--no-debug",
        help="Enable debug logging (default: $is_debug_mode == 'true')",
    ),
    archive_path: Optional[Path] = typer.Option(
        None,
        "--archive-path",
        help="Staging file for the downloaded archive (default: /tmp/cache-archive.tar)",
    ),
    log_dir: Optional[Path] = typer.Option(
        None,
        "--log-dir",
        help="Directory for JSON-lines logs (default: $cache_log_dir, disabled when unset)",
    ),
) -> None:
    """Resolve, download, and restore the build cache."""

    try:
        settings = load_settings(
            cache_api_url=api_url,
            is_debug_mode=debug,
            archive_path=archive_path,
            log_dir=log_dir,
        )
    except ConfigError as exc:
        _err_console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(2)

    logger = setup_logging(level=settings.effective_log_level, log_dir=settings.log_dir)
    logger.info("Cache pull...")

    try:
        result = pull_cache(settings, logger=logger)
    except CachePullError as exc:
        logger.error("Unable to pull cache: %s", exc, extra={"stage": "pull"})
        _err_console.print(f"[red]✗ Unable to pull cache: {exc}[/red]")
        raise typer.Exit(1)

    if result.skipped:
        _console.print("[yellow]No cache configured, nothing to restore[/yellow]")
        return

    entries = result.restore.total_entries if result.restore else 0
    _console.print(
        f"[green]✓ Restored {entries} entries from {format_bytes(result.bytes_downloaded)} "
        "cache archive[/green]"
    )


@app.command("version")
def version_cmd() -> None:
    """Show version information."""

    _console.print(f"[bold]cache-pull[/bold] version {__version__}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Console-script entry point."""

    args = _normalize_args(sys.argv[1:] if argv is None else argv)
    app(args=args, prog_name="cache-pull")
