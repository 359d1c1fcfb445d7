"""Logging setup for applications embedding typed_models."""

from __future__ import annotations

import sys

from loguru import logger

from typed_models.config import LogConfig

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | {message}"


def setup_logging(level: str = "INFO", log_file: str | None = None, **file_options: str) -> None:
    """Send typed_models logs to stderr and optionally to a rotating file.

    The library logger is disabled on import; this enables it.
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    if log_file:
        logger.add(log_file, level=level, format=LOG_FORMAT, **file_options)
    logger.enable("typed_models")
    logger.info("Logging initialized at level {}", level)


def setup_logging_from_config(config: LogConfig) -> None:
    setup_logging(
        config.level,
        config.file,
        rotation=config.rotation,
        retention=config.retention,
    )
