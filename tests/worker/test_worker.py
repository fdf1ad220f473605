"""Tests for the polling oracle worker."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from flashbet.config import Settings
from flashbet.config.settings import DatabaseSettings, FeedSettings, LedgerSettings, WorkerSettings
from flashbet.database.store import InMemorySettlementStore
from flashbet.domain.errors import ConfigurationError, FeedError, TransportError
from flashbet.domain.markets import Bettor, Outcome
from flashbet.feeds.base import GameResult, GameStatus, ResultsFeed
from flashbet.markets.registry import MarketRegistry
from flashbet.oracle.local import InProcessLedger
from flashbet.oracle.saga import ResolutionSaga, RetryPolicy
from flashbet.worker.main import run_worker
from flashbet.worker.worker import OracleWorker

FAST = RetryPolicy(max_attempts=1, backoff_seconds=0, backoff_max_seconds=0)


class StaticFeed(ResultsFeed):
    name = "static"

    def __init__(self, games: list[GameResult]) -> None:
        self.games = games
        self.calls = 0

    async def fetch_completed(self) -> list[GameResult]:
        self.calls += 1
        return list(self.games)


@pytest.fixture
def backend(market_info, before_close) -> InProcessLedger:
    registry = MarketRegistry(clock=before_close)
    ledger = registry.create_market(market_info)
    ledger.place_bet(Outcome.HOME, 100, Bettor(owner="alice"))
    ledger.place_bet(Outcome.AWAY, 100, Bettor(owner="bob"))
    return InProcessLedger(registry)


@pytest.fixture
def finished_game(market_info) -> GameResult:
    return GameResult(
        event_id=market_info.event_id,
        home_team="Yankees",
        away_team="Dodgers",
        home_score=7,
        away_score=3,
        status=GameStatus.COMPLETED,
        start_time=market_info.event_time,
    )


def make_worker(feed, backend, store, *, oracle=None, interval: float = 60.0) -> OracleWorker:
    saga = ResolutionSaga(oracle or backend, backend, backend, store, retry_policy=FAST)
    return OracleWorker(feed, saga, store, poll_interval_seconds=interval)


@pytest.mark.asyncio
async def test_poll_once_resolves_and_marks_processed(backend, finished_game):
    store = InMemorySettlementStore()
    worker = make_worker(StaticFeed([finished_game]), backend, store)

    reports = await worker.poll_once()

    assert len(reports) == 1 and reports[0].completed
    assert await store.is_processed(finished_game.event_id)
    assert backend.balance_of("alice") == 200

    assert await worker.poll_once() == []
    assert len(backend.credits) == 1


@pytest.mark.asyncio
async def test_failed_saga_is_retried_next_tick(backend, finished_game):
    store = InMemorySettlementStore()
    oracle = MagicMock()
    oracle.publish_result = AsyncMock(side_effect=[TransportError("down"), None])
    worker = make_worker(StaticFeed([finished_game]), backend, store, oracle=oracle)

    first = await worker.poll_once()
    assert not first[0].completed
    assert not await store.is_processed(finished_game.event_id)

    second = await worker.poll_once()
    assert second[0].completed
    assert await store.is_processed(finished_game.event_id)


@pytest.mark.asyncio
async def test_feed_errors_are_logged_not_raised(backend):
    feed = MagicMock(spec=ResultsFeed)
    feed.name = "broken"
    feed.fetch_completed = AsyncMock(side_effect=FeedError("Invalid Odds API key"))
    worker = make_worker(feed, backend, InMemorySettlementStore())
    assert await worker.poll_once() == []


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(backend, finished_game):
    gate = asyncio.Event()

    class SlowFeed(StaticFeed):
        async def fetch_completed(self) -> list[GameResult]:
            await gate.wait()
            return await super().fetch_completed()

    feed = SlowFeed([finished_game])
    worker = make_worker(feed, backend, InMemorySettlementStore())

    in_flight = asyncio.create_task(worker.poll_once())
    await asyncio.sleep(0)
    assert await worker.poll_once() == []

    gate.set()
    reports = await in_flight
    assert len(reports) == 1
    assert feed.calls == 1


@pytest.mark.asyncio
async def test_run_polls_until_stopped(backend, finished_game):
    store = InMemorySettlementStore()
    feed = StaticFeed([finished_game])
    worker = make_worker(feed, backend, store, interval=0.01)

    runner = asyncio.create_task(worker.run())
    for _ in range(200):
        if await store.is_processed(finished_game.event_id) and feed.calls >= 2:
            break
        await asyncio.sleep(0.01)
    await worker.stop()
    await asyncio.wait_for(runner, timeout=1)

    assert not worker.running
    assert await store.is_processed(finished_game.event_id)
    assert feed.calls >= 2
    assert len(backend.credits) == 1


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_tick(backend, finished_game):
    gate = asyncio.Event()
    store = InMemorySettlementStore()

    class SlowFeed(StaticFeed):
        async def fetch_completed(self) -> list[GameResult]:
            await gate.wait()
            return await super().fetch_completed()

    worker = make_worker(SlowFeed([finished_game]), backend, store, interval=0.01)
    runner = asyncio.create_task(worker.run())
    await asyncio.sleep(0.02)

    stopping = asyncio.create_task(worker.stop())
    await asyncio.sleep(0.02)
    assert not stopping.done()

    gate.set()
    await asyncio.wait_for(stopping, timeout=1)
    await asyncio.wait_for(runner, timeout=1)
    assert await store.is_processed(finished_game.event_id)


@pytest.mark.asyncio
async def test_worker_refuses_to_start_without_ledger_ids():
    settings = Settings(
        database=DatabaseSettings(dsn="sqlite+aiosqlite:///:memory:"),
        ledger=LedgerSettings(oracle_chain_id="", oracle_app_id="", market_chain_id="", market_app_id=""),
        feed=FeedSettings(mode="mock"),
        worker=WorkerSettings(),
    )
    with pytest.raises(ConfigurationError, match="oracle_chain_id"):
        await run_worker(settings)



@pytest.mark.asyncio
async def test_worker_refuses_to_start_without_payout_application():
    settings = Settings(
        database=DatabaseSettings(dsn="sqlite+aiosqlite:///:memory:"),
        ledger=LedgerSettings(
            oracle_chain_id="oc",
            oracle_app_id="oa",
            market_chain_id="mc",
            market_app_id="ma",
            user_app_id="",
        ),
        feed=FeedSettings(mode="mock"),
        worker=WorkerSettings(),
    )
    with pytest.raises(ConfigurationError, match="user_app_id"):
        await run_worker(settings)


@pytest.mark.asyncio
async def test_crashing_game_does_not_block_the_tick(backend, finished_game, market_info):
    store = InMemorySettlementStore()
    broken = finished_game.model_copy(update={"event_id": "mlb_2025_broken"})
    saga = MagicMock(spec=ResolutionSaga)
    good_report = MagicMock(completed=True, event_id=market_info.event_id)
    saga.run = AsyncMock(side_effect=[ValueError("unreadable market snapshot"), good_report])
    worker = OracleWorker(StaticFeed([broken, finished_game]), saga, store)

    reports = await worker.poll_once()

    assert reports == [good_report]
    assert saga.run.await_count == 2
    assert not await store.is_processed("mlb_2025_broken")
    assert await store.is_processed(market_info.event_id)
