"""Logging setup and Rich console helpers.

Library modules log through ``logging.getLogger(__name__)``; the CLI calls
:func:`setup_logging` once to route those records through Rich on stderr.
User-facing errors go through :func:`print_error`.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

console = Console(stderr=True)

_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def setup_logging(verbosity: int = 0) -> None:
    """Configure the ``appgen`` logger.

    Args:
        verbosity: 0 logs warnings only, 1 adds info, 2 or more adds debug.
    """
    level = _LEVELS.get(verbosity, logging.DEBUG)
    logger = logging.getLogger("appgen")
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setLevel(level)


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]Error:[/bold red] {escape(message)}")