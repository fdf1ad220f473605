"""Domain models shared across the engine, the worker and the services."""

from .amounts import BASE_UNITS, DECIMALS, Amount, format_amount, parse_amount, validate_amount
from .markets import (
    Bet,
    Bettor,
    EventResult,
    MarketInfo,
    MarketKind,
    MarketSnapshot,
    MarketState,
    MarketStatus,
    MarketType,
    Outcome,
    PayoutInstruction,
    PayoutKind,
    Score,
    StatusKind,
)

__all__ = [
    "Amount",
    "BASE_UNITS",
    "DECIMALS",
    "Bet",
    "Bettor",
    "EventResult",
    "MarketInfo",
    "MarketKind",
    "MarketSnapshot",
    "MarketState",
    "MarketStatus",
    "MarketType",
    "Outcome",
    "PayoutInstruction",
    "PayoutKind",
    "Score",
    "StatusKind",
    "format_amount",
    "parse_amount",
    "validate_amount",
]
