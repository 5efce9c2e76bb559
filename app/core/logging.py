"""Logging setup shared by every module."""

import logging
import sys

from app.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(name: str) -> logging.Logger:
    """
    Get a logger configured with the application log level.

    Args:
        name: Logger name, usually the calling module's ``__name__``

    Returns:
        Logger with a single stdout handler
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(settings.LOG_LEVEL.upper())
    return logger
