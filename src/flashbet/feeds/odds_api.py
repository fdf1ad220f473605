"""Completed game results from The Odds API scores endpoint."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from flashbet.config import get_settings
from flashbet.config.settings import FeedSettings
from flashbet.domain.errors import FeedError
from flashbet.domain.markets import UtcDatetime
from flashbet.feeds.base import GameResult, GameStatus, ResultsFeed
from flashbet.markets.ledger import utcnow

logger = structlog.get_logger(__name__)


class OddsApiScore(BaseModel):
    name: str
    score: Optional[str] = None


class OddsApiGame(BaseModel):
    id: str
    sport_key: str
    commence_time: UtcDatetime
    completed: bool = False
    home_team: str
    away_team: str
    scores: Optional[list[OddsApiScore]] = None


_GAMES = TypeAdapter(list[OddsApiGame])


@dataclass(slots=True)
class QuotaStatus:
    """Request quota reported by the most recent response."""

    remaining: int
    used: int
    checked_at: datetime


def event_id_for(game: OddsApiGame) -> str:
    """``{sport_key}_{id}_{YYYYMMDD}`` using the UTC commence date."""

    return f"{game.sport_key}_{game.id}_{game.commence_time.strftime('%Y%m%d')}"


def to_game_result(game: OddsApiGame) -> GameResult | None:
    """Return the completed game, or None when its scores cannot be matched to teams."""

    scores = {score.name: score.score for score in game.scores or []}
    home, away = scores.get(game.home_team), scores.get(game.away_team)
    if home is None or away is None:
        logger.warning("odds_api_scores_missing", home_team=game.home_team, away_team=game.away_team)
        return None
    try:
        home_score, away_score = int(home), int(away)
    except ValueError:
        logger.warning(
            "odds_api_scores_invalid",
            home_team=game.home_team,
            away_team=game.away_team,
            home_score=home,
            away_score=away,
        )
        return None
    return GameResult(
        event_id=event_id_for(game),
        home_team=game.home_team,
        away_team=game.away_team,
        home_score=home_score,
        away_score=away_score,
        status=GameStatus.COMPLETED,
        start_time=game.commence_time,
    )


class OddsApiResultsFeed(ResultsFeed):
    """Live feed polling ``/sports/{sport_key}/scores/``."""

    name = "odds_api"

    def __init__(
        self,
        settings: FeedSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings().feed
        self._client_provided = client is not None
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self.quota: QuotaStatus | None = None

    async def close(self) -> None:
        if not self._client_provided:
            await self._client.aclose()

    @property
    def scores_url(self) -> str:
        return f"{self.settings.odds_api_base_url.rstrip('/')}/sports/{self.settings.sport_key}/scores/"

    async def fetch_completed(self) -> list[GameResult]:
        if not self.settings.odds_api_key:
            raise FeedError("No Odds API key configured; set FEED_ODDS_API_KEY")

        params = {
            "apiKey": self.settings.odds_api_key,
            "daysFrom": self.settings.days_from,
            "dateFormat": "iso",
        }
        try:
            response = await self._client.get(self.scores_url, params=params)
        except httpx.HTTPError as exc:
            raise FeedError(f"Error fetching from The Odds API: {exc}") from exc

        if response.status_code == 401:
            raise FeedError("Invalid Odds API key; check FEED_ODDS_API_KEY")
        if response.status_code == 429:
            raise FeedError("Odds API rate limit exceeded; consider increasing WORKER_POLL_INTERVAL_SECONDS")
        if response.status_code >= 400:
            raise FeedError(f"Odds API returned {response.status_code}: {response.text}")

        self._track_quota(response.headers)
        try:
            games = _GAMES.validate_json(response.content)
        except ValidationError as exc:
            raise FeedError(f"Unexpected Odds API payload: {exc}") from exc

        completed = [game for game in games if game.completed and game.scores and len(game.scores) >= 2]
        results = [result for result in map(to_game_result, completed) if result is not None]
        logger.info(
            "odds_api_polled",
            sport_key=self.settings.sport_key,
            completed=len(results),
            quota_remaining=self.quota.remaining if self.quota else None,
        )
        return results

    def _track_quota(self, headers: httpx.Headers) -> None:
        remaining = headers.get("x-requests-remaining")
        if remaining is None:
            return
        try:
            self.quota = QuotaStatus(
                remaining=int(float(remaining)),
                used=int(float(headers.get("x-requests-used", "0"))),
                checked_at=utcnow(),
            )
        except ValueError:
            logger.warning("odds_api_quota_unparseable", remaining=remaining)
            return
        if self.quota.remaining < self.settings.quota_warning_threshold:
            logger.warning("odds_api_quota_low", remaining=self.quota.remaining)


__all__ = [
    "OddsApiGame",
    "OddsApiResultsFeed",
    "OddsApiScore",
    "QuotaStatus",
    "event_id_for",
    "to_game_result",
]
