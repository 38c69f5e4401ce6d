"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import structlog


def configure_logging(
    log_level: str = "INFO",
    log_dir: str = "logs",
    log_backup_count: int = 7,
) -> None:
    """
    Configure structured logging.

    The repaint area owns the terminal, so only errors reach the console:
    - console (stderr): ERROR and above
    - logs/latest.log: ``log_level`` and above
    - logs/error.log: WARNING and above

    Args:
        log_level: level for latest.log (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: directory for the log files
        log_backup_count: number of daily rotations to keep
    """
    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_upper = log_level.upper()
    if log_level_upper not in valid_levels:
        print(
            f"Warning: Invalid log level '{log_level}', defaulting to INFO",
            file=sys.stderr,
        )
        log_level_upper = "INFO"

    shared_processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    json_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.ERROR)
    console_handler.setFormatter(json_formatter)
    root_logger.addHandler(console_handler)

    log_path = Path(log_dir)
    try:
        log_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(
            f"Warning: Failed to create log directory '{log_dir}': {e}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )
        return

    latest_handler = TimedRotatingFileHandler(
        log_path / "latest.log",
        when="midnight",
        backupCount=log_backup_count,
        encoding="utf-8",
    )
    latest_handler.suffix = "%Y-%m-%d"
    latest_handler.setLevel(getattr(logging, log_level_upper))
    latest_handler.setFormatter(json_formatter)
    root_logger.addHandler(latest_handler)

    error_handler = TimedRotatingFileHandler(
        log_path / "error.log",
        when="midnight",
        backupCount=log_backup_count,
        encoding="utf-8",
    )
    error_handler.suffix = "%Y-%m-%d"
    error_handler.setLevel(logging.WARNING)
    error_handler.setFormatter(json_formatter)
    root_logger.addHandler(error_handler)

    # Third-party chatter stays out of latest.log unless it matters
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("markdown_it").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger.

    Args:
        name: logger name (usually ``__name__``)

    Returns:
        structured logger
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]
