"""Settlement state that must survive restarts.

The store holds the processed-event dedup set, the last completed saga step
per event, the per-(event, bet) payout ledger and market snapshots. A payout
is reserved as pending before its credit is sent and marked issued after, so
a crash between the two leaves a pending entry instead of a second credit. The
in-memory implementation loses everything on restart and is meant for tests
and single-shot runs; ``SqlSettlementStore`` is the production choice.
"""

from __future__ import annotations

from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from flashbet.domain.amounts import Amount
from flashbet.domain.markets import MarketSnapshot, PayoutInstruction

from . import queries
from .models import Base
from .session import async_session_factory, create_engine, dispose_engine, get_engine

logger = structlog.get_logger(__name__)


class SettlementStore(Protocol):
    """Persistence used by the resolution saga and the worker."""

    async def init(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def is_processed(self, event_id: str) -> bool:
        ...

    async def mark_processed(self, event_id: str) -> None:
        ...

    async def get_checkpoint(self, event_id: str) -> str | None:
        """Return the last completed saga step for ``event_id``."""
        ...

    async def save_checkpoint(self, event_id: str, step: str) -> None:
        ...

    async def paid_bet_ids(self, event_id: str) -> set[int]:
        """Bets whose payout credit is confirmed."""
        ...

    async def pending_bet_ids(self, event_id: str) -> set[int]:
        """Bets reserved for a credit that was never confirmed."""
        ...

    async def reserve_payout(self, instruction: PayoutInstruction) -> None:
        ...

    async def record_payout(self, instruction: PayoutInstruction) -> None:
        ...

    async def release_payout(self, event_id: str, bet_id: int) -> None:
        ...

    async def save_market(self, snapshot: MarketSnapshot) -> None:
        ...

    async def load_market(self, event_id: str) -> MarketSnapshot | None:
        ...

    async def list_markets(self) -> list[MarketSnapshot]:
        ...


class InMemorySettlementStore:
    """Process-local store. State is lost when the process exits."""

    def __init__(self) -> None:
        self.processed: set[str] = set()
        self.checkpoints: dict[str, str] = {}
        self.payouts: dict[tuple[str, int], Amount] = {}
        self.pending: dict[tuple[str, int], Amount] = {}
        self.markets: dict[str, MarketSnapshot] = {}

    async def init(self) -> None:
        logger.info("settlement_store_ready", backend="memory")

    async def close(self) -> None:
        return None

    async def is_processed(self, event_id: str) -> bool:
        return event_id in self.processed

    async def mark_processed(self, event_id: str) -> None:
        self.processed.add(event_id)

    async def get_checkpoint(self, event_id: str) -> str | None:
        return self.checkpoints.get(event_id)

    async def save_checkpoint(self, event_id: str, step: str) -> None:
        self.checkpoints[event_id] = str(step)

    async def paid_bet_ids(self, event_id: str) -> set[int]:
        return {bet_id for paid_event, bet_id in self.payouts if paid_event == event_id}

    async def pending_bet_ids(self, event_id: str) -> set[int]:
        return {bet_id for pending_event, bet_id in self.pending if pending_event == event_id}

    async def reserve_payout(self, instruction: PayoutInstruction) -> None:
        if instruction.dedup_key not in self.payouts:
            self.pending.setdefault(instruction.dedup_key, instruction.amount)

    async def record_payout(self, instruction: PayoutInstruction) -> None:
        amount = self.pending.pop(instruction.dedup_key, instruction.amount)
        self.payouts.setdefault(instruction.dedup_key, amount)

    async def release_payout(self, event_id: str, bet_id: int) -> None:
        self.pending.pop((event_id, bet_id), None)

    async def save_market(self, snapshot: MarketSnapshot) -> None:
        self.markets[snapshot.state.event_id] = snapshot

    async def load_market(self, event_id: str) -> MarketSnapshot | None:
        return self.markets.get(event_id)

    async def list_markets(self) -> list[MarketSnapshot]:
        return sorted(self.markets.values(), key=lambda snapshot: snapshot.state.info.event_time)


class SqlSettlementStore:
    """Store backed by an async SQLAlchemy engine.

    Without ``engine`` or ``dsn`` the process-wide engine from
    ``flashbet.database.session`` is used.
    """

    def __init__(self, dsn: str | None = None, *, engine: AsyncEngine | None = None) -> None:
        self._engine_provided = engine is not None
        self._shared = engine is None and dsn is None
        if engine is not None:
            self._engine = engine
            self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        elif dsn is not None:
            self._engine = create_engine(dsn)
            self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
        else:
            self._engine = get_engine()
            self._session_factory = async_session_factory()

    async def init(self) -> None:
        """Create tables that do not exist yet."""

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("settlement_store_ready", backend="sql", url=self._engine.url.render_as_string())

    async def close(self) -> None:
        if self._engine_provided:
            return
        if self._shared:
            await dispose_engine()
        else:
            await self._engine.dispose()

    def _session(self) -> AsyncSession:
        return self._session_factory()

    async def is_processed(self, event_id: str) -> bool:
        async with self._session() as session:
            return await queries.is_processed(session, event_id)

    async def mark_processed(self, event_id: str) -> None:
        async with self._session() as session, session.begin():
            await queries.mark_processed(session, event_id=event_id)

    async def get_checkpoint(self, event_id: str) -> str | None:
        async with self._session() as session:
            return await queries.get_checkpoint(session, event_id)

    async def save_checkpoint(self, event_id: str, step: str) -> None:
        async with self._session() as session, session.begin():
            await queries.save_checkpoint(session, event_id=event_id, step=str(step))

    async def paid_bet_ids(self, event_id: str) -> set[int]:
        async with self._session() as session:
            return await queries.get_paid_bet_ids(session, event_id)

    async def pending_bet_ids(self, event_id: str) -> set[int]:
        async with self._session() as session:
            return await queries.get_pending_bet_ids(session, event_id)

    async def reserve_payout(self, instruction: PayoutInstruction) -> None:
        async with self._session() as session, session.begin():
            await queries.reserve_payout(session, instruction)

    async def record_payout(self, instruction: PayoutInstruction) -> None:
        async with self._session() as session, session.begin():
            await queries.record_payout(session, instruction)

    async def release_payout(self, event_id: str, bet_id: int) -> None:
        async with self._session() as session, session.begin():
            await queries.release_payout(session, event_id=event_id, bet_id=bet_id)

    async def save_market(self, snapshot: MarketSnapshot) -> None:
        async with self._session() as session, session.begin():
            await queries.upsert_market(session, snapshot)

    async def load_market(self, event_id: str) -> MarketSnapshot | None:
        async with self._session() as session:
            return await queries.get_market(session, event_id)

    async def list_markets(self) -> list[MarketSnapshot]:
        async with self._session() as session:
            return await queries.list_markets(session)


__all__ = ["InMemorySettlementStore", "SettlementStore", "SqlSettlementStore"]
