"""Payout distribution for resolved and cancelled markets."""

from flashbet.settlement.payouts import SettlementSummary, compute_payouts, summarize_settlement

__all__ = ["SettlementSummary", "compute_payouts", "summarize_settlement"]
