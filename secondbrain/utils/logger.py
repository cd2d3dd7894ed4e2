"""Loguru setup shared by the CLI and the API server."""
from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

# Standard-library loggers whose records are routed into loguru
_INTERCEPTED = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "httpx")


class _InterceptHandler(logging.Handler):
    """Forward standard-library log records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logger(log_level: str = "INFO", log_file: str | None = "logs/secondbrain.log") -> None:
    """
    Configure loguru once per process.

    - stderr: coloured, human-readable
    - log_file: plain text, rotated at 10 MB, zipped, kept 7 days (skipped when None)
    - uvicorn / httpx stdlib logging is redirected into the same sinks;
      httpx request lines only show at DEBUG
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}",
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            enqueue=True,
        )

    handler = _InterceptHandler()
    for name in _INTERCEPTED:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [handler]
        std_logger.propagate = False
    logging.getLogger("httpx").setLevel(logging.DEBUG if log_level.upper() == "DEBUG" else logging.WARNING)

    logger.info(f"[Logger] level={log_level} | file={log_file or '-'}")
