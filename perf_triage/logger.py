"""Logging configuration built on loguru."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]} | {message}"

logger.configure(extra={"name": "perf-triage"})


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Route log output to stderr and, optionally, a rotating file."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, colorize=True)
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=5,
            backtrace=True,
            diagnose=False,
        )
    logger.debug("Logging configured at {}", level.upper())


def get_logger(name: str):
    """Return a logger bound to a component name."""
    return logger.bind(name=name)
