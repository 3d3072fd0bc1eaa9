from __future__ import annotations

import logging
import os
import sys

LOGGER_NAME = "agentdeck"
_DEFAULT_LEVEL = "WARNING"


def setup_logger(level: str | int | None = None, *, stream=None) -> logging.Logger:
    """Attach a single stderr handler to the package logger (idempotent)."""

    logger = logging.getLogger(LOGGER_NAME)
    resolved_level = level if level is not None else os.getenv("AGENTDECK_LOG_LEVEL", _DEFAULT_LEVEL)
    if isinstance(resolved_level, str):
        resolved_level = resolved_level.strip().upper() or _DEFAULT_LEVEL
    logger.setLevel(resolved_level)
    if logger.handlers:
        return logger

    # stderr keeps diagnostics out of the console renderer's stdout stream.
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
    return logger
