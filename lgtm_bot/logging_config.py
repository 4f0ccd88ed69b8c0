"""Structlog configuration helpers for structured logging."""

from __future__ import annotations

import logging

import structlog

LOG_LEVEL = logging.INFO


def configure_logging(level: str | int = LOG_LEVEL) -> None:
    """Configure structlog to emit JSON-formatted logs at *level*."""

    timestamper = structlog.processors.TimeStamper(fmt="iso")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level)
    # Outbound HTTP request lines would otherwise repeat every GitHub call.
    logging.getLogger("httpx").setLevel(logging.WARNING)
