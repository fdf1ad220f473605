"""Collaborators the resolution saga talks to.

Each call may fail with ``TransportError``; implementations map their own
failures onto the error taxonomy in ``flashbet.domain.errors``.
"""

from __future__ import annotations

from typing import Protocol

from flashbet.domain.markets import EventResult, MarketSnapshot, PayoutInstruction


class OracleLedger(Protocol):
    """Records authoritative event results."""

    async def publish_result(self, result: EventResult) -> None:
        """Publish ``result``; raises ``DuplicateResultError`` if one already exists."""
        ...


class MarketBackend(Protocol):
    """Resolves markets and exposes their pools and bets."""

    async def resolve_market(self, result: EventResult) -> None:
        """Resolve the market for ``result.event_id``; raises ``AlreadyResolvedError`` if terminal."""
        ...

    async def fetch_market(self, event_id: str) -> MarketSnapshot:
        ...


class BalanceBackend(Protocol):
    """Credits payouts to bettor balances."""

    async def credit_payout(self, instruction: PayoutInstruction) -> None:
        ...


__all__ = ["BalanceBackend", "MarketBackend", "OracleLedger"]
