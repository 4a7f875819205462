"""Logging setup for the outline-kb command line."""

import os
import sys

from loguru import logger

# Overrides the level chosen from --verbose, e.g. OUTLINE_KB_LOG_LEVEL=WARNING.
LOG_LEVEL_ENV = "OUTLINE_KB_LOG_LEVEL"


def configure_logging(*, verbose: bool = False) -> str:
    """Replace loguru's default sink with a stderr sink; return the level used."""
    logger.remove()
    level = os.environ.get(LOG_LEVEL_ENV, "").upper() or ("DEBUG" if verbose else "INFO")
    fmt = "{time:HH:mm:ss} {level.icon} {message}" if level == "DEBUG" else "{level.icon} {message}"
    logger.add(sys.stderr, level=level, format=fmt)
    return level
