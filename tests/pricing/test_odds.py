"""Tests for the parimutuel odds calculator."""

from __future__ import annotations

import random
from decimal import Decimal

import pytest

from flashbet.domain.amounts import BASE_UNITS
from flashbet.domain.errors import InvalidAmountError
from flashbet.domain.markets import Outcome
from flashbet.pricing.odds import DEFAULT_ODDS, MIN_ODDS, calculate_odds, estimate_payout


def test_empty_market_uses_default_table():
    pools = {Outcome.HOME: 0, Outcome.AWAY: 0, Outcome.DRAW: 0}
    assert calculate_odds(pools, 0) == {
        Outcome.HOME: Decimal("2.00"),
        Outcome.AWAY: Decimal("2.00"),
        Outcome.DRAW: Decimal("3.00"),
    }


def test_empty_pool_mapping_covers_every_outcome():
    assert calculate_odds({}, 0) == DEFAULT_ODDS


def test_two_way_market_only_quotes_its_outcomes():
    odds = calculate_odds({Outcome.HOME: 0, Outcome.AWAY: 0}, 0)
    assert set(odds) == {Outcome.HOME, Outcome.AWAY}


def test_odds_from_pools():
    pools = {Outcome.HOME: 300, Outcome.AWAY: 100, Outcome.DRAW: 100}
    odds = calculate_odds(pools, 500)
    # 500 * 100 // 300 = 166, floored to two decimals.
    assert odds[Outcome.HOME] == Decimal("1.66")
    assert odds[Outcome.AWAY] == Decimal("5.00")
    assert odds[Outcome.DRAW] == Decimal("5.00")


def test_unbacked_outcome_gets_longshot_odds():
    pools = {Outcome.HOME: 4 * BASE_UNITS, Outcome.AWAY: 0, Outcome.DRAW: 0}
    odds = calculate_odds(pools, 4 * BASE_UNITS)
    assert odds[Outcome.AWAY] == Decimal("5")
    assert odds[Outcome.DRAW] == Decimal("5")
    assert odds[Outcome.HOME] == MIN_ODDS


def test_single_backed_outcome_is_floored():
    odds = calculate_odds({Outcome.HOME: 100, Outcome.AWAY: 0}, 100)
    assert odds[Outcome.HOME] == MIN_ODDS


def test_odds_never_below_floor():
    rng = random.Random(7)
    for _ in range(500):
        pools = {outcome: rng.choice([0, rng.randint(1, 10**24)]) for outcome in Outcome}
        total = sum(pools.values())
        assert all(value >= MIN_ODDS for value in calculate_odds(pools, total).values())


def test_negative_total_is_rejected():
    with pytest.raises(InvalidAmountError):
        calculate_odds({Outcome.HOME: 1}, -1)


def test_estimate_payout():
    estimate = estimate_payout(100, 100, 500)
    assert estimate.odds == Decimal("5.00")
    assert estimate.payout == 500


def test_estimate_payout_with_empty_pool_returns_stake():
    estimate = estimate_payout(250, 0, 1_000)
    assert estimate.odds == Decimal("1.00")
    assert estimate.payout == 250
    assert estimate_payout(250, 0, 0).payout == 250
