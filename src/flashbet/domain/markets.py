"""Market, bet and settlement models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer, model_validator

from flashbet.domain.errors import InvalidOutcomeError, PoolInvariantError

# Amounts travel as decimal-integer strings in JSON so clients never see them as floats.
AmountValue = Annotated[int, Field(ge=0), PlainSerializer(str, return_type=str, when_used="json")]
PositiveAmount = Annotated[int, Field(gt=0), PlainSerializer(str, return_type=str, when_used="json")]


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# Naive datetimes are taken to be UTC; aware ones are converted to it.
UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


class Outcome(str, Enum):
    """Mutually exclusive results a market can resolve to."""

    HOME = "HOME"
    AWAY = "AWAY"
    DRAW = "DRAW"


class MarketKind(str, Enum):
    """Supported market types."""

    MATCH_WINNER = "MATCH_WINNER"
    OVER_UNDER = "OVER_UNDER"
    SPREAD = "SPREAD"


class MarketType(BaseModel):
    """Market type with its optional line. Over/under maps Over=HOME, Under=AWAY."""

    model_config = ConfigDict(frozen=True)

    kind: MarketKind = MarketKind.MATCH_WINNER
    line: Optional[int] = None

    @property
    def outcomes(self) -> tuple[Outcome, ...]:
        if self.kind is MarketKind.MATCH_WINNER:
            return (Outcome.HOME, Outcome.AWAY, Outcome.DRAW)
        return (Outcome.HOME, Outcome.AWAY)

    def validate_outcome(self, outcome: Outcome) -> Outcome:
        """Return ``outcome`` or raise if this market type cannot settle to it."""

        if outcome not in self.outcomes:
            raise InvalidOutcomeError(f"Outcome {outcome.value} is not valid for {self.kind.value} markets")
        return outcome


class StatusKind(str, Enum):
    OPEN = "Open"
    LOCKED = "Locked"
    RESOLVED = "Resolved"
    CANCELLED = "Cancelled"


class MarketStatus(BaseModel):
    """Market lifecycle status. ``winner`` is set exactly when the kind is RESOLVED."""

    model_config = ConfigDict(frozen=True)

    kind: StatusKind = StatusKind.OPEN
    winner: Optional[Outcome] = None

    @model_validator(mode="after")
    def _winner_matches_kind(self) -> MarketStatus:
        if (self.kind is StatusKind.RESOLVED) != (self.winner is not None):
            raise ValueError("winner must be set if and only if the market is resolved")
        return self

    @classmethod
    def open(cls) -> MarketStatus:
        return cls(kind=StatusKind.OPEN)

    @classmethod
    def locked(cls) -> MarketStatus:
        return cls(kind=StatusKind.LOCKED)

    @classmethod
    def resolved(cls, outcome: Outcome) -> MarketStatus:
        return cls(kind=StatusKind.RESOLVED, winner=outcome)

    @classmethod
    def cancelled(cls) -> MarketStatus:
        return cls(kind=StatusKind.CANCELLED)

    @classmethod
    def parse(cls, raw: str) -> MarketStatus:
        """Parse the ledger's textual status, e.g. ``Open`` or ``Resolved(Away)``."""

        text = raw.strip()
        if text.startswith("Resolved(") and text.endswith(")"):
            return cls.resolved(Outcome(text[len("Resolved("):-1].strip().upper()))
        return cls(kind=StatusKind(text.capitalize()))

    @property
    def is_terminal(self) -> bool:
        return self.kind in (StatusKind.RESOLVED, StatusKind.CANCELLED)

    def __str__(self) -> str:
        if self.winner is not None:
            return f"Resolved({self.winner.value.capitalize()})"
        return self.kind.value


class MarketInfo(BaseModel):
    """Immutable description of the event a market is about."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., min_length=1, description="Globally unique event identifier")
    description: str
    event_time: UtcDatetime
    betting_closes_at: Optional[UtcDatetime] = Field(
        default=None, description="Defaults to the event time when omitted."
    )
    market_type: MarketType = Field(default_factory=MarketType)
    home_team: Optional[str] = None
    away_team: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _default_close_time(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("betting_closes_at") is None:
            data = {**data, "betting_closes_at": data.get("event_time")}
        return data


class Bettor(BaseModel):
    """Identity that owns a bet and receives its payout."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1)
    chain_id: Optional[str] = None


class Bet(BaseModel):
    """A placed bet. Bets are append-only and never mutated."""

    model_config = ConfigDict(frozen=True)

    bet_id: int = Field(..., ge=1)
    event_id: str
    owner: str
    chain_id: Optional[str] = None
    outcome: Outcome
    amount: PositiveAmount
    placed_at: UtcDatetime


class MarketState(BaseModel):
    """Point-in-time snapshot of a market's pools and status."""

    model_config = ConfigDict(frozen=True)

    info: MarketInfo
    status: MarketStatus = Field(default_factory=MarketStatus.open)
    pools: dict[Outcome, AmountValue] = Field(default_factory=dict)
    total_pool: AmountValue = 0
    bet_count: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _total_matches_pools(self) -> MarketState:
        if self.total_pool != sum(self.pools.values()):
            raise PoolInvariantError(
                f"total pool {self.total_pool} != sum of pools {sum(self.pools.values())}"
            )
        return self

    @property
    def event_id(self) -> str:
        return self.info.event_id

    @property
    def winning_outcome(self) -> Optional[Outcome]:
        return self.status.winner

    def pool_for(self, outcome: Outcome) -> int:
        return self.pools.get(outcome, 0)


class MarketSnapshot(BaseModel):
    """Market state together with its full bet list, as read from the ledger."""

    model_config = ConfigDict(frozen=True)

    state: MarketState
    bets: tuple[Bet, ...] = ()


class Score(BaseModel):
    model_config = ConfigDict(frozen=True)

    home: int = Field(..., ge=0)
    away: int = Field(..., ge=0)


class EventResult(BaseModel):
    """Authoritative result published to the oracle."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    outcome: Outcome
    score: Optional[Score] = None
    timestamp: UtcDatetime


class PayoutKind(str, Enum):
    WINNINGS = "winnings"
    REFUND = "refund"


class PayoutInstruction(BaseModel):
    """Amount owed to the owner of one bet after settlement."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    bet_id: int
    owner: str
    chain_id: Optional[str] = None
    amount: PositiveAmount
    kind: PayoutKind = PayoutKind.WINNINGS

    @property
    def dedup_key(self) -> tuple[str, int]:
        return (self.event_id, self.bet_id)


__all__ = [
    "AmountValue",
    "Bet",
    "Bettor",
    "EventResult",
    "MarketInfo",
    "MarketKind",
    "MarketSnapshot",
    "MarketState",
    "MarketStatus",
    "MarketType",
    "Outcome",
    "PayoutInstruction",
    "PayoutKind",
    "PositiveAmount",
    "Score",
    "StatusKind",
    "UtcDatetime",
]
