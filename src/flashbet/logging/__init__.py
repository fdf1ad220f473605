"""Logging setup."""

from flashbet.logging.setup import configure_logging

__all__ = ["configure_logging"]
