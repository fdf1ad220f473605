"""Persistence for settlement state."""

from .models import Base, BetRecord, IssuedPayout, MarketRecord, ProcessedEvent, SagaCheckpoint
from .session import async_session_factory, get_engine
from .store import InMemorySettlementStore, SettlementStore, SqlSettlementStore

__all__ = [
    "async_session_factory",
    "get_engine",
    "Base",
    "BetRecord",
    "IssuedPayout",
    "MarketRecord",
    "ProcessedEvent",
    "SagaCheckpoint",
    "InMemorySettlementStore",
    "SettlementStore",
    "SqlSettlementStore",
]
