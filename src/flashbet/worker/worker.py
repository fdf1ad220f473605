"""Polling worker that feeds completed games into the resolution saga."""

from __future__ import annotations

import asyncio

import structlog

from flashbet.database.store import SettlementStore
from flashbet.domain.errors import FeedError, ResolutionInProgressError
from flashbet.feeds.base import ResultsFeed, to_event_result
from flashbet.oracle.saga import ResolutionSaga, SagaReport

logger = structlog.get_logger(__name__)


class OracleWorker:
    """Polls a results feed on a fixed interval and resolves new games.

    At most one tick runs at a time; a tick that comes due while the previous
    one is still in flight is skipped. An event is marked processed only once
    its saga has completed, so failed sagas are picked up again next tick.
    """

    def __init__(
        self,
        feed: ResultsFeed,
        saga: ResolutionSaga,
        store: SettlementStore,
        *,
        poll_interval_seconds: float = 60.0,
    ) -> None:
        self.feed = feed
        self.saga = saga
        self.store = store
        self.poll_interval_seconds = poll_interval_seconds
        self._stop_event = asyncio.Event()
        self._tick_task: asyncio.Task[None] | None = None
        self._in_flight = False
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def poll_once(self) -> list[SagaReport]:
        """Run one tick and return the reports of the sagas it ran."""

        if self._in_flight:
            logger.warning("poll_tick_skipped", reason="previous tick in flight")
            return []
        self._in_flight = True
        try:
            return await self._tick()
        finally:
            self._in_flight = False

    async def _tick(self) -> list[SagaReport]:
        try:
            games = await self.feed.fetch_completed()
        except FeedError as exc:
            logger.error("feed_poll_failed", feed=self.feed.name, error=str(exc))
            return []

        reports: list[SagaReport] = []
        for game in games:
            if await self.store.is_processed(game.event_id):
                continue
            result = to_event_result(game)
            logger.info(
                "game_result_received",
                event_id=result.event_id,
                outcome=result.outcome.value,
                home_score=game.home_score,
                away_score=game.away_score,
            )
            try:
                report = await self.saga.run(result)
            except ResolutionInProgressError as exc:
                logger.warning("resolution_in_progress", event_id=result.event_id, error=str(exc))
                continue
            except Exception:
                # One broken event must not hold up the rest of the tick.
                logger.exception("game_resolution_crashed", event_id=result.event_id)
                continue
            reports.append(report)
            if report.completed:
                await self.store.mark_processed(result.event_id)
                logger.info("game_processed", event_id=result.event_id)
            else:
                logger.warning(
                    "game_resolution_incomplete",
                    event_id=result.event_id,
                    failed_step=report.failed_step.value if report.failed_step else None,
                    error=report.error,
                )
        if not games:
            logger.info("no_finished_games", feed=self.feed.name)
        return reports

    async def _scheduled_tick(self) -> None:
        try:
            await self.poll_once()
        except Exception:
            logger.exception("poll_tick_failed", feed=self.feed.name)

    async def run(self) -> None:
        """Poll until ``stop`` or ``request_stop`` is called."""

        if self._running:
            logger.warning("oracle_worker_already_running")
            return
        self._running = True
        self._stop_event.clear()
        logger.info(
            "oracle_worker_started",
            feed=self.feed.name,
            poll_interval_seconds=self.poll_interval_seconds,
        )
        try:
            while not self._stop_event.is_set():
                if self._tick_task is not None and not self._tick_task.done():
                    logger.warning("poll_tick_skipped", reason="previous tick in flight")
                else:
                    self._tick_task = asyncio.create_task(self._scheduled_tick())
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval_seconds)
                except asyncio.TimeoutError:
                    continue
        finally:
            await self._drain()
            self._running = False
            logger.info("oracle_worker_stopped")

    def request_stop(self) -> None:
        """Ask the poll loop to exit after the in-flight tick."""

        self._stop_event.set()

    async def stop(self) -> None:
        """Stop polling and wait for the in-flight tick to finish."""

        self.request_stop()
        await self._drain()

    async def _drain(self) -> None:
        task = self._tick_task
        if task is not None and not task.done():
            logger.info("waiting_for_in_flight_tick")
            await asyncio.shield(task)


__all__ = ["OracleWorker"]
