"""Structured logging configuration for the engine and worker."""

from __future__ import annotations

import logging

import structlog

from flashbet.config import get_settings


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer()


def configure_logging(level: str | None = None, *, log_format: str | None = None) -> None:
    """Route structlog through stdlib logging at ``level``.

    Both arguments default to ``LOG_LEVEL`` and ``LOG_FORMAT``. JSON lines
    are emitted unless the format is ``console``.
    """

    settings = get_settings()
    log_level = (level or settings.log_level).upper()

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.processors.UnicodeDecoder(),
            _renderer(log_format or settings.log_format),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(message)s",
    )
    # httpx logs one line per request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING if log_level != "DEBUG" else logging.DEBUG)


__all__ = ["configure_logging"]
