"""Sports-results feeds."""

from flashbet.config.settings import FeedSettings
from flashbet.feeds.base import GameResult, GameStatus, ResultsFeed, determine_outcome, to_event_result
from flashbet.feeds.mock import MockResultsFeed
from flashbet.feeds.odds_api import OddsApiResultsFeed


def build_feed(settings: FeedSettings) -> ResultsFeed:
    """Return the feed selected by ``settings.mode``."""

    if settings.mode == "live":
        return OddsApiResultsFeed(settings)
    return MockResultsFeed()


__all__ = [
    "GameResult",
    "GameStatus",
    "MockResultsFeed",
    "OddsApiResultsFeed",
    "ResultsFeed",
    "build_feed",
    "determine_outcome",
    "to_event_result",
]
