"""SQLAlchemy ORM models for settlement state.

Amounts are stored as decimal-integer strings; token quantities in base units
overflow every native SQL integer type.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

AMOUNT_LENGTH = 80

PAYOUT_PENDING = "pending"
PAYOUT_ISSUED = "issued"


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TimestampMixin:
    """Mixin that adds created/updated timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class ProcessedEvent(Base, TimestampMixin):
    """Feed result whose resolution saga has finished."""

    __tablename__ = "processed_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)


class SagaCheckpoint(Base, TimestampMixin):
    """Last completed resolution step per event."""

    __tablename__ = "saga_checkpoints"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    step: Mapped[str] = mapped_column(String(32), nullable=False)


class IssuedPayout(Base, TimestampMixin):
    """Payout credit sent to the balance backend.

    A row is written as ``pending`` before the credit goes out and flipped to
    ``issued`` once the backend has accepted it. A row left ``pending`` means
    the credit may or may not have landed and needs reconciling.
    """

    __tablename__ = "issued_payouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    bet_id: Mapped[int] = mapped_column(Integer, nullable=False)
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PAYOUT_ISSUED)

    __table_args__ = (
        UniqueConstraint("event_id", "bet_id", name="uq_issued_payouts_event_bet"),
        Index("ix_issued_payouts_event", "event_id"),
    )


class MarketRecord(Base, TimestampMixin):
    """Persisted market snapshot."""

    __tablename__ = "markets"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    betting_closes_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    market_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    market_line: Mapped[int | None] = mapped_column(Integer, nullable=True)
    home_team: Mapped[str | None] = mapped_column(String(255), nullable=True)
    away_team: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    pools: Mapped[dict] = mapped_column(JSON, nullable=False)
    total_pool: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False)

    bets: Mapped[list["BetRecord"]] = relationship(
        back_populates="market",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="BetRecord.bet_id",
    )


class BetRecord(Base):
    """Bet belonging to a persisted market."""

    __tablename__ = "bets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("markets.event_id", ondelete="CASCADE"), nullable=False
    )
    bet_id: Mapped[int] = mapped_column(Integer, nullable=False)
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    chain_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    outcome: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False)
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    market: Mapped[MarketRecord] = relationship(back_populates="bets")

    __table_args__ = (UniqueConstraint("event_id", "bet_id", name="uq_bets_event_bet"),)


__all__ = [
    "Base",
    "BetRecord",
    "IssuedPayout",
    "PAYOUT_ISSUED",
    "PAYOUT_PENDING",
    "MarketRecord",
    "ProcessedEvent",
    "SagaCheckpoint",
]
