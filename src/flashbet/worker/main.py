"""Process entrypoint for the oracle worker."""

from __future__ import annotations

import asyncio
import signal
import sys

import structlog

from flashbet.config import Settings, get_settings
from flashbet.database.store import SqlSettlementStore
from flashbet.domain.errors import ConfigurationError
from flashbet.feeds import build_feed
from flashbet.logging import configure_logging
from flashbet.oracle.graphql import GraphQLLedgerClient
from flashbet.oracle.saga import ResolutionSaga, RetryPolicy
from flashbet.worker.worker import OracleWorker

logger = structlog.get_logger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


async def run_worker(settings: Settings | None = None) -> None:
    """Wire the worker from settings and poll until SIGINT or SIGTERM."""

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    missing = settings.missing_ledger_fields()
    if missing:
        raise ConfigurationError(f"Missing ledger configuration: {', '.join(missing)}")

    feed = build_feed(settings.feed)
    client = GraphQLLedgerClient(settings.ledger)
    store = SqlSettlementStore(settings.database.dsn)
    await store.init()

    saga = ResolutionSaga(
        client,
        client,
        client,
        store,
        retry_policy=RetryPolicy.from_settings(settings.worker),
    )
    worker = OracleWorker(
        feed,
        saga,
        store,
        poll_interval_seconds=settings.worker.poll_interval_seconds,
    )

    loop = asyncio.get_running_loop()

    def shutdown() -> None:
        logger.info("shutdown_signal_received")
        worker.request_stop()

    if sys.platform != "win32":
        for sig in _SIGNALS:
            loop.add_signal_handler(sig, shutdown)
    try:
        await worker.run()
    finally:
        if sys.platform != "win32":
            for sig in _SIGNALS:
                loop.remove_signal_handler(sig)
        await feed.close()
        await client.close()
        await store.close()


def main() -> None:
    try:
        asyncio.run(run_worker())
    except ConfigurationError as exc:
        logger.error("oracle_worker_misconfigured", error=str(exc))
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
