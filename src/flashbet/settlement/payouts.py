"""Proportional payout computation for settled markets.

Each winning bet receives ``floor(bet.amount * total_pool / winning_pool)``,
multiplied before dividing so no precision is lost. Flooring happens per bet,
so the payouts may sum to slightly less than the total pool. That residue
(dust) stays undistributed, and is always smaller than the number of winners.

A resolved market whose winning outcome has no bets produces no
instructions; what happens to that pool is decided outside this module.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from flashbet.domain.amounts import Amount, mul_div
from flashbet.domain.errors import MarketNotSettledError, PoolInvariantError
from flashbet.domain.markets import Bet, MarketState, PayoutInstruction, PayoutKind, StatusKind


def _instruction(bet: Bet, amount: Amount, kind: PayoutKind) -> PayoutInstruction:
    return PayoutInstruction(
        event_id=bet.event_id,
        bet_id=bet.bet_id,
        owner=bet.owner,
        chain_id=bet.chain_id,
        amount=amount,
        kind=kind,
    )


def compute_payouts(market: MarketState, bets: Sequence[Bet]) -> list[PayoutInstruction]:
    """Return the payout owed to every winning bet, in bet order.

    Cancelled markets refund every stake in full. The function is pure: it
    neither mutates its inputs nor performs I/O.

    Raises:
        MarketNotSettledError: the market is still open or locked.
        PoolInvariantError: a bet belongs to another market, or the recorded
            winning pool differs from the stakes placed on the winning outcome.
    """

    foreign = [bet.bet_id for bet in bets if bet.event_id != market.event_id]
    if foreign:
        raise PoolInvariantError(f"Bets {foreign} do not belong to market {market.event_id}")

    kind = market.status.kind
    if kind is StatusKind.CANCELLED:
        return [_instruction(bet, bet.amount, PayoutKind.REFUND) for bet in bets]

    if kind is StatusKind.RESOLVED:
        winner = market.status.winner
        winning_bets = [bet for bet in bets if bet.outcome is winner]
        winning_pool = market.pool_for(winner)
        staked = sum(bet.amount for bet in winning_bets)
        if staked != winning_pool:
            raise PoolInvariantError(
                f"Winning pool {winning_pool} for {market.event_id} != staked {staked}"
            )
        if not winning_bets:
            return []
        return [
            _instruction(bet, mul_div(bet.amount, market.total_pool, winning_pool), PayoutKind.WINNINGS)
            for bet in winning_bets
        ]

    raise MarketNotSettledError(f"Market {market.event_id} is {market.status}; nothing to pay out")


@dataclass(frozen=True, slots=True)
class SettlementSummary:
    """Aggregate view of one settlement run."""

    event_id: str
    total_pool: Amount
    winning_pool: Amount
    num_winners: int
    distributed: Amount

    @property
    def dust(self) -> Amount:
        """Pool left undistributed by per-bet flooring. Zero-winner pools are not dust."""

        if self.num_winners == 0:
            return 0
        return self.total_pool - self.distributed

    @property
    def orphaned(self) -> Amount:
        """Pool nobody can claim because the winning outcome had no bets."""

        return self.total_pool if self.num_winners == 0 else 0


def summarize_settlement(market: MarketState, instructions: Sequence[PayoutInstruction]) -> SettlementSummary:
    if market.status.kind is StatusKind.CANCELLED:
        winning_pool = market.total_pool
    elif market.status.winner is not None:
        winning_pool = market.pool_for(market.status.winner)
    else:
        raise MarketNotSettledError(f"Market {market.event_id} is {market.status}")
    return SettlementSummary(
        event_id=market.event_id,
        total_pool=market.total_pool,
        winning_pool=winning_pool,
        num_winners=len(instructions),
        distributed=sum(instruction.amount for instruction in instructions),
    )


__all__ = ["SettlementSummary", "compute_payouts", "summarize_settlement"]
