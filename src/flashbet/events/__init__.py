"""Market lifecycle events."""

from flashbet.events.models import EventType, MarketEvent

__all__ = ["EventType", "MarketEvent"]
