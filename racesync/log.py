"""
Logger factory. One stderr handler per named logger, level from settings.
"""

from __future__ import annotations

import logging
import sys

from racesync.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a configured logger instance."""
    logger = logging.getLogger(name or "racesync")
    if not logger.handlers:
        logger.setLevel(getattr(logging, settings.log_level, logging.WARNING))
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    return logger
