"""Market ledgers and the registry that owns them."""

from flashbet.markets.ledger import MarketLedger, coerce_outcome
from flashbet.markets.registry import MarketRegistry, validate_event_id

__all__ = ["MarketLedger", "MarketRegistry", "coerce_outcome", "validate_event_id"]
