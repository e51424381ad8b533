"""Structured logging setup (structlog on top of stdlib logging)."""

from __future__ import annotations

import logging
import sys

import structlog

NOISY_HTTP_LOGGERS = ("httpx", "httpcore")


def configure_logging(log_level: str = "INFO", *, json_logs: bool = False) -> None:
    """Configure structlog for the whole process.

    JSON lines in production, coloured console output otherwise.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    noisy_level = logging.DEBUG if level == logging.DEBUG else logging.WARNING
    for name in NOISY_HTTP_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
