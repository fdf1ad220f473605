"""Oracle, market and balance backend that lives inside the current process."""

from __future__ import annotations

from collections import defaultdict

import structlog

from flashbet.domain.amounts import Amount
from flashbet.domain.errors import DuplicateResultError
from flashbet.domain.markets import EventResult, MarketSnapshot, PayoutInstruction
from flashbet.markets.registry import MarketRegistry

logger = structlog.get_logger(__name__)


class InProcessLedger:
    """Implements ``OracleLedger``, ``MarketBackend`` and ``BalanceBackend`` over a registry."""

    def __init__(self, registry: MarketRegistry | None = None) -> None:
        self.registry = registry if registry is not None else MarketRegistry()
        self.results: dict[str, EventResult] = {}
        self.balances: defaultdict[str, Amount] = defaultdict(int)
        self.credits: list[PayoutInstruction] = []

    async def publish_result(self, result: EventResult) -> None:
        if result.event_id in self.results:
            raise DuplicateResultError(f"Event result already published: {result.event_id}")
        self.results[result.event_id] = result
        logger.info("oracle_result_recorded", event_id=result.event_id, outcome=result.outcome.value)

    def get_result(self, event_id: str) -> EventResult | None:
        return self.results.get(event_id)

    async def resolve_market(self, result: EventResult) -> None:
        self.registry.get(result.event_id).resolve(result.outcome)

    async def fetch_market(self, event_id: str) -> MarketSnapshot:
        return self.registry.get(event_id).snapshot()

    async def credit_payout(self, instruction: PayoutInstruction) -> None:
        self.balances[instruction.owner] += instruction.amount
        self.credits.append(instruction)

    def balance_of(self, owner: str) -> Amount:
        return self.balances.get(owner, 0)


__all__ = ["InProcessLedger"]
