"""
Logging configuration for Model Lifecycle.

Every module obtains its logger through ``get_logger(__name__)`` so that a
single ``setup_logging()`` call (CLI entry point, application startup) controls
the whole package.

Usage:
    from model_lifecycle.utils.logging_config import get_logger, setup_logging

    setup_logging("DEBUG")
    logger = get_logger(__name__)
    logger.info("[Pull] Starting download of '%s'", model_id)
"""

import logging
import os
import sys
from typing import Optional, Union

PACKAGE_LOGGER_NAME = "model_lifecycle"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    """Return a logger for *name* (normally the calling module's ``__name__``)."""
    return logging.getLogger(name)


def setup_logging(
    level: Optional[Union[str, int]] = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Configure the package logger with a single stream handler.

    Safe to call more than once: the existing handler is reused and only the
    level is updated.

    Args:
        level: Log level name or number. Defaults to the
               ``MODEL_LIFECYCLE_LOG_LEVEL`` environment variable, then INFO.
        fmt: Log record format string.

    Returns:
        The configured package logger.
    """
    if level is None:
        level = os.getenv("MODEL_LIFECYCLE_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    package_logger.setLevel(level)

    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt, datefmt=DEFAULT_DATE_FORMAT))
        package_logger.addHandler(handler)
        package_logger.propagate = False

    for handler in package_logger.handlers:
        handler.setLevel(level)

    return package_logger
