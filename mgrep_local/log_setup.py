"""Logging setup for mgrep-local."""

import sys
from typing import Optional

from loguru import logger

VERBOSE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
DEFAULT_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"


def setup_logging(verbose: bool = False, level: Optional[str] = None) -> None:
    """Configure the loguru stderr sink.

    Args:
        verbose: Log at DEBUG with source locations instead of INFO
        level: Explicit level, overriding verbose
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or ("DEBUG" if verbose else "INFO"),
        format=VERBOSE_FORMAT if verbose else DEFAULT_FORMAT,
    )


def setup_logging_from_config(config) -> None:
    """Configure logging from MgrepConfig.debug and MgrepConfig.log_level."""
    setup_logging(verbose=config.debug, level=config.log_level)
