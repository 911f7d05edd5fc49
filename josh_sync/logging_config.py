"""
Logging configuration for josh_sync.

Command traces are emitted as DEBUG records on the ``josh_sync`` logger and
only shown in verbose mode.
"""

import logging
import os
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

# Check for debug mode
DEBUG_MODE = os.environ.get("JOSH_SYNC_DEBUG", "").lower() in ("1", "true", "yes")


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """Set up the ``josh_sync`` logger.

    Args:
        verbose: Show DEBUG records (external commands before they run)
        console: Console to render on (defaults to stderr)

    Returns:
        Configured logger
    """
    level = logging.DEBUG if verbose or DEBUG_MODE else logging.INFO

    logger = logging.getLogger("josh_sync")
    logger.setLevel(level)
    logger.handlers.clear()

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)

    return logger


def get_logger(name: str = "josh_sync") -> logging.Logger:
    """Get a logger below the ``josh_sync`` namespace."""
    if not name.startswith("josh_sync"):
        name = f"josh_sync.{name}"
    return logging.getLogger(name)
