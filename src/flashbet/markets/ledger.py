"""Single-market ledger: pools, append-only bets and the status state machine.

Status transitions::

    Open -> Locked | Resolved(outcome) | Cancelled
    Locked -> Resolved(outcome) | Cancelled

Resolved and Cancelled are terminal.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import structlog

from flashbet.domain.amounts import Amount, validate_amount
from flashbet.domain.errors import (
    AlreadyResolvedError,
    InvalidOutcomeError,
    MarketNotOpenError,
    PoolInvariantError,
)
from flashbet.domain.markets import (
    Bet,
    Bettor,
    MarketInfo,
    MarketSnapshot,
    MarketState,
    MarketStatus,
    Outcome,
    StatusKind,
)
from flashbet.events.models import EventType, MarketEvent
from flashbet.pricing.odds import calculate_odds

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def coerce_outcome(outcome: Outcome | str) -> Outcome:
    """Accept an ``Outcome`` or its name, case-insensitively."""

    if isinstance(outcome, Outcome):
        return outcome
    try:
        return Outcome(str(outcome).strip().upper())
    except ValueError as exc:
        raise InvalidOutcomeError(f"Unknown outcome: {outcome!r}") from exc


class MarketLedger:
    """Holds one market's pools, bets and status.

    Every mutation happens under a single lock so the pool increment, the
    total-pool increment and the bet append are observed together by
    concurrent callers.
    """

    def __init__(self, info: MarketInfo, *, clock: Clock | None = None) -> None:
        self.info = info
        self._clock = clock or utcnow
        self._lock = threading.Lock()
        self._status = MarketStatus.open()
        self._pools: dict[Outcome, Amount] = {outcome: 0 for outcome in info.market_type.outcomes}
        self._total_pool: Amount = 0
        self._bets: list[Bet] = []
        self._next_bet_id = 1
        self._events: list[MarketEvent] = []
        self._emit(EventType.MARKET_CREATED, description=info.description)

    @classmethod
    def from_snapshot(cls, snapshot: MarketSnapshot, *, clock: Clock | None = None) -> MarketLedger:
        """Rebuild a ledger from a persisted snapshot, checking pools against bets."""

        ledger = cls(snapshot.state.info, clock=clock)
        ledger._events.clear()
        for bet in snapshot.bets:
            ledger._pools[bet.outcome] = ledger._pools.get(bet.outcome, 0) + bet.amount
            ledger._total_pool += bet.amount
            ledger._bets.append(bet)
        recorded = snapshot.state.pools
        if any(ledger._pools.get(o, 0) != recorded.get(o, 0) for o in {*ledger._pools, *recorded}):
            raise PoolInvariantError(f"Snapshot pools for {ledger.event_id} disagree with its bets")
        ledger._next_bet_id = max((bet.bet_id for bet in snapshot.bets), default=0) + 1
        ledger._status = snapshot.state.status
        return ledger

    @property
    def event_id(self) -> str:
        return self.info.event_id

    @property
    def status(self) -> MarketStatus:
        return self._status

    @property
    def total_pool(self) -> Amount:
        return self._total_pool

    @property
    def bet_count(self) -> int:
        return len(self._bets)

    @property
    def pools(self) -> dict[Outcome, Amount]:
        return dict(self._pools)

    @property
    def bets(self) -> tuple[Bet, ...]:
        return tuple(self._bets)

    @property
    def events(self) -> tuple[MarketEvent, ...]:
        return tuple(self._events)

    def state(self) -> MarketState:
        with self._lock:
            return self._state_locked()

    def snapshot(self) -> MarketSnapshot:
        with self._lock:
            return MarketSnapshot(state=self._state_locked(), bets=tuple(self._bets))

    def odds(self) -> dict[Outcome, Decimal]:
        """Current multipliers. Recomputed on every call."""

        with self._lock:
            return calculate_odds(dict(self._pools), self._total_pool)

    def place_bet(
        self,
        outcome: Outcome | str,
        amount: Amount,
        bettor: Bettor,
        *,
        placed_at: datetime | None = None,
    ) -> Bet:
        """Accept a stake on ``outcome`` and return the recorded bet.

        Raises:
            InvalidAmountError: amount is zero, negative or not an integer.
            InvalidOutcomeError: outcome is not part of this market type.
            MarketNotOpenError: market is not open or betting has closed.
        """

        validate_amount(amount)
        outcome = self.info.market_type.validate_outcome(coerce_outcome(outcome))

        with self._lock:
            now = placed_at or self._clock()
            if self._status.kind is not StatusKind.OPEN:
                raise MarketNotOpenError(f"Market {self.event_id} is not open for betting: {self._status}")
            closes_at = self.info.betting_closes_at
            if closes_at is not None and now >= closes_at:
                raise MarketNotOpenError(
                    f"Betting on {self.event_id} closed at {closes_at.isoformat()}"
                )

            bet = Bet(
                bet_id=self._next_bet_id,
                event_id=self.event_id,
                owner=bettor.owner,
                chain_id=bettor.chain_id,
                outcome=outcome,
                amount=amount,
                placed_at=now,
            )
            self._pools[outcome] += amount
            self._total_pool += amount
            self._bets.append(bet)
            self._next_bet_id += 1
            self._emit(
                EventType.BET_PLACED,
                bet_id=bet.bet_id,
                outcome=outcome.value,
                amount=str(amount),
                total_pool=str(self._total_pool),
            )

        logger.info(
            "bet_placed",
            event_id=self.event_id,
            bet_id=bet.bet_id,
            outcome=outcome.value,
            amount=str(amount),
        )
        return bet

    def lock(self) -> None:
        """Stop accepting bets. Locking a locked market is a no-op."""

        with self._lock:
            if self._status.is_terminal:
                raise AlreadyResolvedError(f"Market {self.event_id} is already {self._status}")
            if self._status.kind is StatusKind.LOCKED:
                return
            self._status = MarketStatus.locked()
            self._emit(EventType.MARKET_LOCKED)
        logger.info("market_locked", event_id=self.event_id)

    def lock_if_closed(self, now: datetime | None = None) -> bool:
        """Lock an open market whose betting window has passed. Returns True if locked."""

        now = now or self._clock()
        closes_at = self.info.betting_closes_at
        with self._lock:
            if self._status.kind is not StatusKind.OPEN or closes_at is None or now < closes_at:
                return False
            self._status = MarketStatus.locked()
            self._emit(EventType.MARKET_LOCKED, closed_at=closes_at.isoformat())
        logger.info("market_locked", event_id=self.event_id, reason="betting_closed")
        return True

    def resolve(self, outcome: Outcome | str) -> None:
        """Settle the market on ``outcome``. The outcome may have no bets on it."""

        outcome = self.info.market_type.validate_outcome(coerce_outcome(outcome))
        with self._lock:
            if self._status.is_terminal:
                raise AlreadyResolvedError(f"Market {self.event_id} is already {self._status}")
            self._status = MarketStatus.resolved(outcome)
            winners = sum(1 for bet in self._bets if bet.outcome is outcome)
            self._emit(
                EventType.MARKET_RESOLVED,
                winning_outcome=outcome.value,
                total_pool=str(self._total_pool),
                winning_pool=str(self._pools[outcome]),
                num_winners=winners,
            )
        logger.info(
            "market_resolved",
            event_id=self.event_id,
            outcome=outcome.value,
            total_pool=str(self._total_pool),
            num_winners=winners,
        )

    def cancel(self) -> None:
        """Cancel the market. Every stake becomes refundable."""

        with self._lock:
            if self._status.is_terminal:
                raise AlreadyResolvedError(f"Market {self.event_id} is already {self._status}")
            self._status = MarketStatus.cancelled()
            self._emit(EventType.MARKET_CANCELLED, total_pool=str(self._total_pool))
        logger.info("market_cancelled", event_id=self.event_id, bet_count=self.bet_count)

    def _state_locked(self) -> MarketState:
        return MarketState(
            info=self.info,
            status=self._status,
            pools=dict(self._pools),
            total_pool=self._total_pool,
            bet_count=len(self._bets),
        )

    def _emit(self, event_type: EventType, **payload: Any) -> None:
        self._events.append(
            MarketEvent(
                event_type=event_type,
                event_id=self.event_id,
                timestamp=self._clock(),
                payload=payload,
            )
        )


__all__ = ["Clock", "MarketLedger", "coerce_outcome", "utcnow"]
