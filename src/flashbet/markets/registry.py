"""Registry of markets keyed by event id."""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from datetime import datetime

import structlog

from flashbet.domain.errors import InvalidEventIdError, MarketExistsError, MarketNotFoundError
from flashbet.domain.markets import MarketInfo, MarketSnapshot
from flashbet.markets.ledger import Clock, MarketLedger

logger = structlog.get_logger(__name__)


def validate_event_id(event_id: str, allowed_prefixes: Sequence[str] | None = None) -> str:
    """Reject blank ids and, when prefixes are configured, ids outside them."""

    if not event_id or not event_id.strip():
        raise InvalidEventIdError("Event id must not be blank")
    if allowed_prefixes and not event_id.startswith(tuple(allowed_prefixes)):
        raise InvalidEventIdError(f"Invalid event id format: {event_id}")
    return event_id


class MarketRegistry:
    """Owns every market ledger the process knows about."""

    def __init__(
        self,
        *,
        allowed_prefixes: Sequence[str] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.allowed_prefixes = tuple(allowed_prefixes) if allowed_prefixes else None
        self._clock = clock
        self._markets: dict[str, MarketLedger] = {}
        self._lock = threading.Lock()

    def create_market(self, info: MarketInfo) -> MarketLedger:
        validate_event_id(info.event_id, self.allowed_prefixes)
        with self._lock:
            if info.event_id in self._markets:
                raise MarketExistsError(f"Market already exists for {info.event_id}")
            ledger = MarketLedger(info, clock=self._clock)
            self._markets[info.event_id] = ledger
        logger.info(
            "market_created",
            event_id=info.event_id,
            market_type=info.market_type.kind.value,
            description=info.description,
        )
        return ledger

    def restore(self, snapshot: MarketSnapshot) -> MarketLedger:
        """Load a persisted market, replacing any in-memory copy."""

        ledger = MarketLedger.from_snapshot(snapshot, clock=self._clock)
        with self._lock:
            self._markets[ledger.event_id] = ledger
        return ledger

    def get(self, event_id: str) -> MarketLedger:
        try:
            return self._markets[event_id]
        except KeyError:
            raise MarketNotFoundError(f"Market {event_id} does not exist") from None

    def lock_closed_markets(self, now: datetime | None = None) -> list[str]:
        """Lock every open market whose betting window has passed."""

        return [ledger.event_id for ledger in list(self._markets.values()) if ledger.lock_if_closed(now)]

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._markets

    def __iter__(self) -> Iterator[MarketLedger]:
        return iter(list(self._markets.values()))

    def __len__(self) -> int:
        return len(self._markets)


__all__ = ["MarketRegistry", "validate_event_id"]
