"""
Logging and console helpers.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

custom_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "step": "blue bold",
        "highlight": "magenta",
    }
)

console = Console(theme=custom_theme)


def configure_logging(level: str = "INFO") -> None:
    """Route all module loggers through a single rich handler."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def success(message: str) -> None:
    console.print(f"[success]✓[/success] {message}")


def warning(message: str) -> None:
    console.print(f"[warning]⚠[/warning] {message}")


def error(message: str) -> None:
    console.print(f"[error]✗[/error] {message}")


def step(message: str) -> None:
    console.print(f"[step]→[/step] {message}")
