"""Logging setup shared by the CLI, the service and the analysis engine."""

from __future__ import annotations

import logging
from pathlib import Path

from .config import LoggingConfig

_ROOT = "archdiagram"
# Parse workers log from their own threads, so the file sink records the thread.
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``archdiagram.<name>``, or the package logger itself."""
    return logging.getLogger(f"{_ROOT}.{name}" if name else _ROOT)


def configure_logging(
    *,
    verbose: bool = False,
    log_file: Path | None = None,
    settings: LoggingConfig | None = None,
) -> logging.Logger:
    """Install console and optional file handlers on the package logger.

    ``verbose`` forces DEBUG; otherwise ``settings.level`` applies. An explicit
    ``log_file`` wins over ``settings.file``. Calling this again replaces the
    previously installed handlers.
    """
    settings = settings or LoggingConfig()
    level = logging.DEBUG if verbose else logging.getLevelName(settings.level.upper())
    logger = logging.getLogger(_ROOT)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(settings.format))
    logger.addHandler(console)

    sink = log_file or settings.file
    if sink is not None:
        sink.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(sink, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger


__all__ = ["configure_logging", "get_logger"]
