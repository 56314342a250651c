"""Centralized logging for the API process, with optional file rotation."""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

from civicwatch.config import Settings


LOGGER_NAME = "civicwatch"


def init_logging(settings: Settings) -> logging.Logger:
    level = getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        # Already configured (e.g. create_app called twice in tests).
        return logger

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if settings.log_dir:
        os.makedirs(settings.log_dir, exist_ok=True)
        log_path = os.path.join(settings.log_dir, "civicwatch.log")
        file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    logger.info("Logging initialized (level=%s, file=%s)", logging.getLevelName(level), bool(settings.log_dir))
    return logger
