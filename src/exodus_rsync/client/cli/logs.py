"""Logging setup for the exodus-rsync command."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def level_for_verbosity(verbosity: int) -> int:
    """Map the number of -v flags to a log level."""
    if verbosity <= 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def setup_logging(verbosity: int = 0) -> None:
    """Configure logging to stderr for the exodus_rsync logger.

    Args:
        verbosity: Number of -v flags given.
    """
    root_logger = logging.getLogger("exodus_rsync")
    root_logger.setLevel(level_for_verbosity(verbosity))

    # Replace handlers from any earlier call
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(stderr_handler)
    root_logger.propagate = False
