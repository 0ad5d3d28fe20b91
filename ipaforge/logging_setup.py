"""Logging bootstrap for the CLI.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed once, by the entry point.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", *, console: Console | None = None) -> None:
    """Route ipaforge logs through a ``RichHandler`` on stderr."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    root = logging.getLogger("ipaforge")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
