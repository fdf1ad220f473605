"""Simulated results feed for local runs."""

from __future__ import annotations

import random
from collections.abc import Iterable
from datetime import timedelta

import structlog

from flashbet.feeds.base import GameResult, GameStatus, ResultsFeed
from flashbet.markets.ledger import Clock, utcnow

logger = structlog.get_logger(__name__)

MAX_MOCK_SCORE = 5


def default_games(clock: Clock = utcnow) -> list[GameResult]:
    return [
        GameResult(
            event_id="mlb_2025_finals",
            home_team="Yankees",
            away_team="Dodgers",
            start_time=clock() + timedelta(minutes=5),
        )
    ]


class MockResultsFeed(ResultsFeed):
    """Scheduled games finish once their start time has passed.

    Final scores are drawn once per game from a seeded generator, so repeated
    polls report the same result.
    """

    name = "mock"

    def __init__(
        self,
        games: Iterable[GameResult] | None = None,
        *,
        seed: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._clock = clock or utcnow
        self._games = list(games) if games is not None else default_games(self._clock)
        self._random = random.Random(seed)
        self._finished: dict[str, GameResult] = {}

    async def fetch_completed(self) -> list[GameResult]:
        now = self._clock()
        completed: list[GameResult] = []
        for game in self._games:
            if game.status is GameStatus.COMPLETED:
                completed.append(game)
                continue
            if now <= game.start_time:
                continue
            finished = self._finished.get(game.event_id)
            if finished is None:
                finished = game.model_copy(
                    update={
                        "home_score": self._random.randint(1, MAX_MOCK_SCORE),
                        "away_score": self._random.randint(1, MAX_MOCK_SCORE),
                        "status": GameStatus.COMPLETED,
                    }
                )
                self._finished[game.event_id] = finished
                logger.info(
                    "mock_game_finished",
                    event_id=game.event_id,
                    home_score=finished.home_score,
                    away_score=finished.away_score,
                )
            completed.append(finished)
        return completed


__all__ = ["MockResultsFeed", "default_games"]
