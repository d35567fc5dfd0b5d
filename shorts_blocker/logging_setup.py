from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from typing import Optional

from .config import LOG_FILE

LOGGER_NAME = "ShortsBlocker"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def get_logger(component: Optional[str] = None) -> logging.Logger:
    base = logging.getLogger(LOGGER_NAME)
    return base.getChild(component) if component else base


def parse_level(level: Optional[str], default: int = logging.INFO) -> int:
    value = logging.getLevelName((level or "").strip().upper())
    return value if isinstance(value, int) else default


def setup_logging(level: str = "INFO", log_file: Optional[str] = LOG_FILE) -> logging.Logger:
    """Console at ``level`` (stderr, so CLI output stays clean) plus a DEBUG rotating file."""
    logger = get_logger()
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    fmt = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(parse_level(level))
    stream_handler.setFormatter(fmt)
    logger.addHandler(stream_handler)

    return logger


__all__ = ["LOGGER_NAME", "LOG_FORMAT", "get_logger", "parse_level", "setup_logging"]
