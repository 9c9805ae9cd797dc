"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Any

import structlog

_LOGGING_INITIALISED = False


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger.

    Console output is always enabled; a ``botrange.log`` file handler is added
    when ``log_dir`` is given.
    """

    global _LOGGING_INITIALISED
    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        handlers: dict[str, dict[str, Any]] = {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "plain",
            },
        }
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            handlers["run_file"] = {
                "class": "logging.FileHandler",
                "level": "INFO",
                "filename": str(log_dir / "botrange.log"),
                "formatter": "plain",
                "encoding": "utf-8",
            }
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "plain": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": handlers,
                "loggers": {
                    "botrange": {
                        "handlers": list(handlers),
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger("botrange")


def source_logger(source_id: str) -> structlog.BoundLogger:
    """Return a logger bound to a specific source."""

    return structlog.get_logger(f"botrange.source.{source_id}").bind(source=source_id)


__all__ = ["configure_logging", "source_logger"]
