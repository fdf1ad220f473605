"""High-level async helpers for interacting with the persistence layer."""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from flashbet.domain.markets import (
    Bet,
    MarketInfo,
    MarketKind,
    MarketSnapshot,
    MarketState,
    MarketStatus,
    MarketType,
    Outcome,
    PayoutInstruction,
)

from .models import (
    PAYOUT_ISSUED,
    PAYOUT_PENDING,
    BetRecord,
    IssuedPayout,
    MarketRecord,
    ProcessedEvent,
    SagaCheckpoint,
)


async def mark_processed(session: AsyncSession, *, event_id: str) -> ProcessedEvent:
    """Record that an event's resolution saga has finished."""

    persisted = await session.merge(ProcessedEvent(event_id=event_id))
    await session.flush()
    return persisted


async def is_processed(session: AsyncSession, event_id: str) -> bool:
    stmt = select(ProcessedEvent.event_id).where(ProcessedEvent.event_id == event_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None


async def save_checkpoint(session: AsyncSession, *, event_id: str, step: str) -> SagaCheckpoint:
    """Insert or update the last completed saga step for an event."""

    persisted = await session.merge(SagaCheckpoint(event_id=event_id, step=step))
    await session.flush()
    return persisted


async def get_checkpoint(session: AsyncSession, event_id: str) -> str | None:
    stmt = select(SagaCheckpoint.step).where(SagaCheckpoint.event_id == event_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _get_payout(session: AsyncSession, event_id: str, bet_id: int) -> IssuedPayout | None:
    stmt = select(IssuedPayout).where(IssuedPayout.event_id == event_id, IssuedPayout.bet_id == bet_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def _add_payout(session: AsyncSession, instruction: PayoutInstruction, status: str) -> IssuedPayout:
    payout = IssuedPayout(
        event_id=instruction.event_id,
        bet_id=instruction.bet_id,
        owner=instruction.owner,
        amount=str(instruction.amount),
        kind=instruction.kind.value,
        status=status,
    )
    session.add(payout)
    await session.flush()
    return payout


async def reserve_payout(session: AsyncSession, instruction: PayoutInstruction) -> IssuedPayout:
    """Write a pending row for a credit about to be sent. An existing row is left alone."""

    existing = await _get_payout(session, instruction.event_id, instruction.bet_id)
    if existing is not None:
        return existing
    return await _add_payout(session, instruction, PAYOUT_PENDING)


async def record_payout(session: AsyncSession, instruction: PayoutInstruction) -> IssuedPayout:
    """Mark a payout issued. Recording the same bet twice keeps the first amount."""

    existing = await _get_payout(session, instruction.event_id, instruction.bet_id)
    if existing is None:
        return await _add_payout(session, instruction, PAYOUT_ISSUED)
    if existing.status != PAYOUT_ISSUED:
        existing.status = PAYOUT_ISSUED
        await session.flush()
    return existing


async def release_payout(session: AsyncSession, *, event_id: str, bet_id: int) -> bool:
    """Drop a pending row so the credit can be sent again. Issued rows are kept."""

    stmt = delete(IssuedPayout).where(
        IssuedPayout.event_id == event_id,
        IssuedPayout.bet_id == bet_id,
        IssuedPayout.status == PAYOUT_PENDING,
    )
    result = await session.execute(stmt)
    return bool(result.rowcount)


async def _bet_ids_with_status(session: AsyncSession, event_id: str, status: str) -> set[int]:
    stmt = select(IssuedPayout.bet_id).where(IssuedPayout.event_id == event_id, IssuedPayout.status == status)
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def get_paid_bet_ids(session: AsyncSession, event_id: str) -> set[int]:
    return await _bet_ids_with_status(session, event_id, PAYOUT_ISSUED)


async def get_pending_bet_ids(session: AsyncSession, event_id: str) -> set[int]:
    return await _bet_ids_with_status(session, event_id, PAYOUT_PENDING)


async def upsert_market(session: AsyncSession, snapshot: MarketSnapshot) -> MarketRecord:
    """Insert or replace a market snapshot together with its bets."""

    state = snapshot.state
    info = state.info
    await session.execute(delete(BetRecord).where(BetRecord.event_id == info.event_id))
    record = MarketRecord(
        event_id=info.event_id,
        description=info.description,
        event_time=info.event_time,
        betting_closes_at=info.betting_closes_at,
        market_kind=info.market_type.kind.value,
        market_line=info.market_type.line,
        home_team=info.home_team,
        away_team=info.away_team,
        status=str(state.status),
        pools={outcome.value: str(amount) for outcome, amount in state.pools.items()},
        total_pool=str(state.total_pool),
        bets=[
            BetRecord(
                event_id=bet.event_id,
                bet_id=bet.bet_id,
                owner=bet.owner,
                chain_id=bet.chain_id,
                outcome=bet.outcome.value,
                amount=str(bet.amount),
                placed_at=bet.placed_at,
            )
            for bet in snapshot.bets
        ],
    )
    persisted = await session.merge(record)
    await session.flush()
    return persisted


def _to_snapshot(record: MarketRecord) -> MarketSnapshot:
    info = MarketInfo(
        event_id=record.event_id,
        description=record.description,
        event_time=record.event_time,
        betting_closes_at=record.betting_closes_at,
        market_type=MarketType(kind=MarketKind(record.market_kind), line=record.market_line),
        home_team=record.home_team,
        away_team=record.away_team,
    )
    state = MarketState(
        info=info,
        status=MarketStatus.parse(record.status),
        pools={Outcome(outcome): int(amount) for outcome, amount in record.pools.items()},
        total_pool=int(record.total_pool),
        bet_count=len(record.bets),
    )
    bets = tuple(
        Bet(
            bet_id=bet.bet_id,
            event_id=bet.event_id,
            owner=bet.owner,
            chain_id=bet.chain_id,
            outcome=Outcome(bet.outcome),
            amount=int(bet.amount),
            placed_at=bet.placed_at,
        )
        for bet in record.bets
    )
    return MarketSnapshot(state=state, bets=bets)


async def get_market(session: AsyncSession, event_id: str) -> MarketSnapshot | None:
    """Return a persisted market snapshot by event id."""

    stmt = select(MarketRecord).where(MarketRecord.event_id == event_id)
    record = (await session.execute(stmt)).scalar_one_or_none()
    return _to_snapshot(record) if record is not None else None


async def list_markets(session: AsyncSession) -> list[MarketSnapshot]:
    stmt = select(MarketRecord).order_by(MarketRecord.event_time)
    result = await session.execute(stmt)
    return [_to_snapshot(record) for record in result.scalars().all()]


__all__ = [
    "get_checkpoint",
    "get_market",
    "get_paid_bet_ids",
    "get_pending_bet_ids",
    "is_processed",
    "list_markets",
    "mark_processed",
    "record_payout",
    "release_payout",
    "reserve_payout",
    "save_checkpoint",
    "upsert_market",
]
