"""Parimutuel odds derived from current pool sizes."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal

from flashbet.domain.amounts import Amount, format_amount, validate_amount
from flashbet.domain.markets import Outcome

# Cold-start table used while the market has no bets at all.
DEFAULT_ODDS: dict[Outcome, Decimal] = {
    Outcome.HOME: Decimal("2.00"),
    Outcome.AWAY: Decimal("2.00"),
    Outcome.DRAW: Decimal("3.00"),
}
MIN_ODDS = Decimal("1.01")


def _ratio(numerator: Amount, denominator: Amount) -> Decimal:
    """Return ``numerator / denominator`` floored to two decimals using integer math."""

    return Decimal(numerator * 100 // denominator).scaleb(-2)


def calculate_odds(pools: Mapping[Outcome, Amount], total_pool: Amount) -> dict[Outcome, Decimal]:
    """Return the payout multiplier for every outcome in ``pools``.

    An outcome nobody has backed yet is quoted at ``total pool in whole tokens + 1``,
    a longshot convention rather than a derived price. Every multiplier is
    floored at ``MIN_ODDS``.
    """

    validate_amount(total_pool, allow_zero=True)
    outcomes = tuple(pools) or tuple(Outcome)

    if total_pool == 0:
        return {outcome: DEFAULT_ODDS[outcome] for outcome in outcomes}

    longshot = max(MIN_ODDS, Decimal(format_amount(total_pool)) + 1)
    odds: dict[Outcome, Decimal] = {}
    for outcome in outcomes:
        pool = validate_amount(pools.get(outcome, 0), allow_zero=True)
        if pool == 0:
            odds[outcome] = longshot
        else:
            odds[outcome] = max(MIN_ODDS, _ratio(total_pool, pool))
    return odds


@dataclass(frozen=True, slots=True)
class PayoutEstimate:
    """Multiplier and gross payout a bet would receive at current pools."""

    odds: Decimal
    payout: Amount


def estimate_payout(bet_amount: Amount, outcome_pool: Amount, total_pool: Amount) -> PayoutEstimate:
    """Preview ``floor(bet * total / outcome_pool)`` for a stake on one outcome.

    With an empty outcome pool or an empty market the stake is simply returned.
    """

    validate_amount(bet_amount, allow_zero=True)
    validate_amount(outcome_pool, allow_zero=True)
    validate_amount(total_pool, allow_zero=True)
    if outcome_pool == 0 or total_pool == 0:
        return PayoutEstimate(odds=Decimal("1.00"), payout=bet_amount)
    return PayoutEstimate(
        odds=max(MIN_ODDS, _ratio(total_pool, outcome_pool)),
        payout=bet_amount * total_pool // outcome_pool,
    )


__all__ = ["DEFAULT_ODDS", "MIN_ODDS", "PayoutEstimate", "calculate_odds", "estimate_payout"]
