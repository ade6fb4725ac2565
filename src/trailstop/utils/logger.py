# file: trailstop/utils/logger.py

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILE = os.getenv("TRAILSTOP_LOG_FILE", "trailstop.log")

LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

_configured = []


def setup_logger(name: str = "TrailStop", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger  # already configured

    logger.setLevel(level)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    if LOG_FILE:
        fh = logging.FileHandler(LOG_FILE, encoding="utf-8", delay=True)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    _configured.append(logger)
    return logger


def set_log_level(level_name: str) -> int:
    """Apply a config level name (error/warn/info/debug) to every logger created here."""
    level = LEVELS.get(str(level_name).lower())
    if level is None:
        raise ValueError(f"Unknown log level: {level_name}")
    for logger in _configured:
        logger.setLevel(level)
    return level
