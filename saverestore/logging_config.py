"""Logging configuration for the save & restore service."""

import sys

from loguru import logger

from saverestore.config import settings


def configure_logging(*, verbose: bool = False) -> None:
    """Configure loguru with appropriate level."""
    logger.remove()
    level = "DEBUG" if verbose else settings.log_level.upper()
    logger.add(
        sys.stderr,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} {level: <7} {name}: {message}",
    )
