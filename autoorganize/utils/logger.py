"""Logging configuration using Loguru."""

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from autoorganize.config import LoggingConfig

# Third-party loggers routed through loguru
STDLIB_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "watchdog", "neo4j")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[module]}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[module]}:{line} - {message}"


class _StdlibHandler(logging.Handler):
    """Forwards standard-library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.bind(module=record.name).opt(exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(config: "LoggingConfig") -> None:
    """
    Configure Loguru: colored console output plus, optionally, a rotating
    serialized file and a separate error-only file.

    Args:
        config: Logging section of the configuration
    """
    logger.remove()
    logger.configure(extra={"module": "autoorganize"})

    logger.add(
        sys.stderr,
        level=config.level,
        format=CONSOLE_FORMAT,
        colorize=True,
        serialize=False,
    )

    if config.log_to_file:
        log_path = Path(config.log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path / "autoorganize_{time:YYYY-MM-DD}.log",
            level=config.level,
            format=FILE_FORMAT,
            rotation=config.file_rotation,
            retention=config.file_retention,
            compression=config.compression,
            serialize=config.serialize,
            enqueue=True,
        )
        # Errors only
        logger.add(
            log_path / "autoorganize_errors.log",
            level="ERROR",
            format=FILE_FORMAT,
            rotation=config.file_rotation,
            retention=config.file_retention,
            serialize=config.serialize,
            enqueue=True,
        )

    handler = _StdlibHandler()
    for name in STDLIB_LOGGERS:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [handler]
        stdlib_logger.propagate = False


def get_logger(name: str):
    """Get a logger instance for a module."""
    return logger.bind(module=name)
