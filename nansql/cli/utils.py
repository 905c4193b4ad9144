"""Shared CLI utilities for nansql."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.markup import escape

# Single console instance reused across CLI modules
console = Console()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """Configure root logging for CLI runs.

    Args:
        level: Level name used when ``verbose`` is off.
        verbose: Force DEBUG output.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def print_exception(message: str, error: Exception, verbose: bool = False) -> None:
    """Render a formatted exception message.

    Args:
        message: Friendly context message to display before the exception.
        error: Original exception instance.
        verbose: When True, render the full traceback for debugging.
    """
    console.print(f"[red]{message}: {escape(str(error))}[/red]")
    if verbose:
        import traceback

        console.print(f"[dim]{traceback.format_exc()}[/dim]")
