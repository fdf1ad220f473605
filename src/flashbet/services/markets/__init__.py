"""Markets API service."""

from flashbet.services.markets.app import build_app

__all__ = ["build_app"]
