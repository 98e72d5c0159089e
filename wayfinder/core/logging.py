"""Logging setup shared by the CLI and every module.

All loggers live under the ``wayfinder`` namespace. Console output goes to
stderr so stdout stays free for the run summary; a rotating file handler is
added when ``LOG_FILE`` is set.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from wayfinder.core.config import get_settings

ROOT_LOGGER = "wayfinder"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

_configured = False


def setup_logging(level: str | None = None, log_file: str | None = None) -> logging.Logger:
    """Attach console and file handlers to the ``wayfinder`` logger once per process.

    *level* and *log_file* override the settings; an empty log file disables
    the file handler.
    """
    global _configured
    logger = logging.getLogger(ROOT_LOGGER)
    if _configured:
        return logger

    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    target = settings.log_file if log_file is None else log_file

    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.propagate = False
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if target:
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    _configured = True
    logger.info("Logging ready | level=%s | file=%s", level_name, target or "-")
    return logger


def reset_logging() -> None:
    """Drop the handlers added by :func:`setup_logging` so it can run again."""
    global _configured
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    _configured = False


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Logger for *name*, placed under the ``wayfinder`` namespace."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
