"""Sports-results feed abstractions."""

from __future__ import annotations

import abc
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from flashbet.domain.markets import EventResult, Outcome, Score, UtcDatetime


class GameStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"


class GameResult(BaseModel):
    """A game as reported by a results feed."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., min_length=1)
    home_team: str
    away_team: str
    home_score: int = Field(0, ge=0)
    away_score: int = Field(0, ge=0)
    status: GameStatus = GameStatus.SCHEDULED
    start_time: UtcDatetime


def determine_outcome(game: GameResult) -> Outcome:
    """Map a final score to the winning outcome."""

    if game.home_score > game.away_score:
        return Outcome.HOME
    if game.away_score > game.home_score:
        return Outcome.AWAY
    return Outcome.DRAW


def to_event_result(game: GameResult, *, timestamp: datetime | None = None) -> EventResult:
    """Build the oracle result for a completed game."""

    return EventResult(
        event_id=game.event_id,
        outcome=determine_outcome(game),
        score=Score(home=game.home_score, away=game.away_score),
        timestamp=timestamp or game.start_time,
    )


class ResultsFeed(abc.ABC):
    """Source of completed games. Entries may repeat across polls."""

    name: str

    @abc.abstractmethod
    async def fetch_completed(self) -> list[GameResult]:
        """Return every completed game currently reported by the feed.

        Raises:
            FeedError: the feed could not be read.
        """

    async def close(self) -> None:
        return None


__all__ = ["GameResult", "GameStatus", "ResultsFeed", "determine_outcome", "to_event_result"]
