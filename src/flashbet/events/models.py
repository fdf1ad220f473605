"""Market lifecycle events recorded by the ledger."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Enumeration describing the lifecycle of a market."""

    MARKET_CREATED = "market_created"
    BET_PLACED = "bet_placed"
    MARKET_LOCKED = "market_locked"
    MARKET_RESOLVED = "market_resolved"
    MARKET_CANCELLED = "market_cancelled"
    PAYOUT_DISTRIBUTED = "payout_distributed"


class MarketEvent(BaseModel):
    """A single lifecycle event for one market."""

    event_type: EventType
    event_id: str = Field(..., description="Event identifier of the market.")
    timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "event_type": "bet_placed",
                "event_id": "mlb_2025_finals",
                "timestamp": "2025-10-24T00:00:00Z",
                "payload": {"bet_id": 1, "outcome": "HOME", "amount": "1000000000000000000"},
            }
        },
    )


__all__ = ["EventType", "MarketEvent"]
