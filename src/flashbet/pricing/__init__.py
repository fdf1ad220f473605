"""Odds and payout previews computed from pool sizes."""

from flashbet.pricing.odds import DEFAULT_ODDS, MIN_ODDS, PayoutEstimate, calculate_odds, estimate_payout

__all__ = ["DEFAULT_ODDS", "MIN_ODDS", "PayoutEstimate", "calculate_odds", "estimate_payout"]
