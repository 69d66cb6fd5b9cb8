"""
Package logger.
"""

import logging
import sys

LOGGER_NAME = "capyupload"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

logger = logging.getLogger(LOGGER_NAME)


def configure_logging(level="INFO") -> logging.Logger:
    """Attach a stderr handler to the package logger (idempotent)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    if not any(getattr(h, "_capyupload", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._capyupload = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger
