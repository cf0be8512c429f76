"""Logging configuration for classprov."""

import logging
import os

LOGGER_NAME = "classprov"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _level_from_env(default: int) -> int:
    value = os.getenv("CLASSPROV_LOG_LEVEL", "").strip().upper()
    if not value:
        return default
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else default


def setup_logging(level: int | None = None) -> logging.Logger:
    """
    Attach a stream handler to the package logger.

    The level comes from the argument, then CLASSPROV_LOG_LEVEL, then WARNING.
    Propagation is disabled so records are not printed twice when the root
    logger is configured too.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level if level is not None else _level_from_env(logging.WARNING))

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
