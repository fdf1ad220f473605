"""Error taxonomy shared by the settlement engine and its collaborators."""

from __future__ import annotations


class FlashBetError(RuntimeError):
    """Base class for every error raised by the engine."""


class InvalidFormatError(FlashBetError, ValueError):
    """Raised when a decimal amount string cannot be parsed."""


class InvalidAmountError(FlashBetError, ValueError):
    """Raised for zero, negative or non-integer amounts."""


class InvalidOutcomeError(FlashBetError, ValueError):
    """Raised when an outcome is not valid for the market type."""


class InvalidEventIdError(FlashBetError, ValueError):
    """Raised when an event identifier is blank or has an unknown prefix."""


class MarketNotOpenError(FlashBetError):
    """Raised when a bet is placed on a market that is not accepting bets."""


class AlreadyResolvedError(FlashBetError):
    """Raised when a terminal market is asked to transition again."""


class MarketNotFoundError(FlashBetError, LookupError):
    """Raised when no market exists for an event id."""


class MarketExistsError(FlashBetError):
    """Raised when a market is created twice for the same event id."""


class MarketNotSettledError(FlashBetError):
    """Raised when payouts are requested before a market is resolved or cancelled."""


class PoolInvariantError(FlashBetError):
    """Raised when recorded pools disagree with the bets placed on them."""


class DuplicateResultError(FlashBetError):
    """Raised when the oracle already holds a result for an event."""


class ResolutionInProgressError(FlashBetError):
    """Raised when a resolution saga is already running for the same event."""


class TransportError(FlashBetError):
    """Network or remote-call failure. Always retryable by the caller."""


class FeedError(FlashBetError):
    """Raised when the sports-results feed cannot be read."""


class ConfigurationError(FlashBetError):
    """Raised when required configuration is missing."""


class PartialPayoutFailure(FlashBetError):
    """One or more payout credits failed while others succeeded.

    ``failures`` holds ``(bet_id, error message)`` pairs in payout order.
    """

    def __init__(self, event_id: str, failures: list[tuple[int, str]]) -> None:
        self.event_id = event_id
        self.failures = list(failures)
        failed = ", ".join(f"bet {bet_id}: {error}" for bet_id, error in self.failures)
        super().__init__(f"{len(self.failures)} payout(s) failed for {event_id}: {failed}")


__all__ = [
    "AlreadyResolvedError",
    "ConfigurationError",
    "DuplicateResultError",
    "FeedError",
    "FlashBetError",
    "InvalidAmountError",
    "InvalidEventIdError",
    "InvalidFormatError",
    "InvalidOutcomeError",
    "MarketExistsError",
    "MarketNotFoundError",
    "MarketNotOpenError",
    "MarketNotSettledError",
    "PartialPayoutFailure",
    "PoolInvariantError",
    "ResolutionInProgressError",
    "TransportError",
]
