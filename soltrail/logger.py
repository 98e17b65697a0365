"""
Structured logging for soltrail.

structlog with ISO timestamps and log level. Logs go to stderr so stdout
stays reserved for command output (JSON / JSONL / tables).

    logger = get_logger(__name__)
    logger.info("signature_page_fetched", address=addr, entries=1000)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog._config import BoundLoggerLazyProxy

DEFAULT_LEVEL = os.getenv("SOLTRAIL_LOG_LEVEL", "WARNING").upper()
DEFAULT_FORMAT = os.getenv("SOLTRAIL_LOG_FORMAT", "console").strip().lower()

VALID_LOG_FORMATS = {"json", "console"}


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """(Re)configure structlog: level filter, timestamp, JSON or console renderer."""
    level_name = (level or DEFAULT_LEVEL).upper()
    level_value = getattr(logging, level_name, logging.WARNING)
    fmt = (fmt or DEFAULT_FORMAT).lower()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


if not structlog.is_configured():
    configure_logging()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structured logger bound to the module name."""
    # structlog.get_logger(name, logger=name) collides with wrap_logger's
    # positional ``logger`` parameter, so build the lazy proxy directly.
    return BoundLoggerLazyProxy(
        None, logger_factory_args=(name,), initial_values={"logger": name}
    )
