"""FastAPI application for creating markets, placing bets and previewing payouts."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog

from fastapi import APIRouter, FastAPI, Query, Request, status
from pydantic import BaseModel, Field

from flashbet.config import get_settings
from flashbet.database.store import SettlementStore
from flashbet.domain.amounts import format_amount, parse_amount
from flashbet.domain.markets import Bet, Bettor, MarketInfo, MarketKind, MarketType, Outcome, PayoutInstruction
from flashbet.markets.ledger import MarketLedger, coerce_outcome
from flashbet.markets.registry import MarketRegistry
from flashbet.pricing.odds import estimate_payout
from flashbet.services.base import create_app
from flashbet.settlement.payouts import compute_payouts, summarize_settlement

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/markets", tags=["Markets"])

DEFAULT_LOCK_INTERVAL_SECONDS = 30.0


class CreateMarketRequest(BaseModel):
    event_id: str = Field(..., min_length=1)
    description: str
    event_time: datetime
    betting_closes_at: Optional[datetime] = None
    market_kind: MarketKind = MarketKind.MATCH_WINNER
    line: Optional[int] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None


class ResolveRequest(BaseModel):
    outcome: str


class PlaceBetRequest(BaseModel):
    outcome: str
    amount: str = Field(..., description="Stake in whole tokens, e.g. \"1.5\".")
    owner: str = Field(..., min_length=1)
    chain_id: Optional[str] = None


class MarketView(BaseModel):
    event_id: str
    description: str
    event_time: datetime
    betting_closes_at: Optional[datetime]
    market_kind: MarketKind
    line: Optional[int]
    home_team: Optional[str]
    away_team: Optional[str]
    status: str
    pools: dict[Outcome, str]
    total_pool: str
    total_pool_display: str
    bet_count: int
    odds: dict[Outcome, str]


class BetView(BaseModel):
    bet_id: int
    event_id: str
    owner: str
    chain_id: Optional[str]
    outcome: Outcome
    amount: str
    amount_display: str
    placed_at: datetime


class EstimateView(BaseModel):
    outcome: Outcome
    amount: str
    odds: str
    payout: str
    payout_display: str


class PayoutView(BaseModel):
    bet_id: int
    owner: str
    kind: str
    amount: str
    amount_display: str


class SettlementView(BaseModel):
    event_id: str
    status: str
    total_pool: str
    winning_pool: str
    num_winners: int
    distributed: str
    dust: str
    orphaned: str
    payouts: list[PayoutView]


def _registry(request: Request) -> MarketRegistry:
    return request.app.state.registry


async def _persist(request: Request, ledger: MarketLedger) -> None:
    store: SettlementStore | None = request.app.state.store
    if store is not None:
        await store.save_market(ledger.snapshot())


def _market_view(ledger: MarketLedger) -> MarketView:
    state = ledger.state()
    info = state.info
    return MarketView(
        event_id=info.event_id,
        description=info.description,
        event_time=info.event_time,
        betting_closes_at=info.betting_closes_at,
        market_kind=info.market_type.kind,
        line=info.market_type.line,
        home_team=info.home_team,
        away_team=info.away_team,
        status=str(state.status),
        pools={outcome: str(amount) for outcome, amount in state.pools.items()},
        total_pool=str(state.total_pool),
        total_pool_display=format_amount(state.total_pool),
        bet_count=state.bet_count,
        odds={outcome: str(odds) for outcome, odds in ledger.odds().items()},
    )


def _bet_view(bet: Bet) -> BetView:
    return BetView(
        bet_id=bet.bet_id,
        event_id=bet.event_id,
        owner=bet.owner,
        chain_id=bet.chain_id,
        outcome=bet.outcome,
        amount=str(bet.amount),
        amount_display=format_amount(bet.amount),
        placed_at=bet.placed_at,
    )


def _payout_view(instruction: PayoutInstruction) -> PayoutView:
    return PayoutView(
        bet_id=instruction.bet_id,
        owner=instruction.owner,
        kind=instruction.kind.value,
        amount=str(instruction.amount),
        amount_display=format_amount(instruction.amount),
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_market(payload: CreateMarketRequest, request: Request) -> MarketView:
    info = MarketInfo(
        event_id=payload.event_id,
        description=payload.description,
        event_time=payload.event_time,
        betting_closes_at=payload.betting_closes_at,
        market_type=MarketType(kind=payload.market_kind, line=payload.line),
        home_team=payload.home_team,
        away_team=payload.away_team,
    )
    ledger = _registry(request).create_market(info)
    await _persist(request, ledger)
    return _market_view(ledger)


@router.get("")
async def list_markets(request: Request) -> list[MarketView]:
    return [_market_view(ledger) for ledger in _registry(request)]


@router.get("/{event_id}")
async def get_market(event_id: str, request: Request) -> MarketView:
    return _market_view(_registry(request).get(event_id))


@router.post("/{event_id}/bets", status_code=status.HTTP_201_CREATED)
async def place_bet(event_id: str, payload: PlaceBetRequest, request: Request) -> BetView:
    ledger = _registry(request).get(event_id)
    bet = ledger.place_bet(
        payload.outcome,
        parse_amount(payload.amount),
        Bettor(owner=payload.owner, chain_id=payload.chain_id),
    )
    await _persist(request, ledger)
    return _bet_view(bet)


@router.get("/{event_id}/bets")
async def list_bets(event_id: str, request: Request) -> list[BetView]:
    return [_bet_view(bet) for bet in _registry(request).get(event_id).bets]


@router.post("/{event_id}/lock")
async def lock_market(event_id: str, request: Request) -> MarketView:
    ledger = _registry(request).get(event_id)
    ledger.lock()
    await _persist(request, ledger)
    return _market_view(ledger)


@router.post("/{event_id}/cancel")
async def cancel_market(event_id: str, request: Request) -> MarketView:
    ledger = _registry(request).get(event_id)
    ledger.cancel()
    await _persist(request, ledger)
    return _market_view(ledger)


@router.post("/{event_id}/resolve")
async def resolve_market(event_id: str, payload: ResolveRequest, request: Request) -> MarketView:
    """Settle the market on an outcome reported by an operator."""

    ledger = _registry(request).get(event_id)
    ledger.resolve(payload.outcome)
    await _persist(request, ledger)
    return _market_view(ledger)


@router.get("/{event_id}/estimate")
async def estimate(
    event_id: str,
    request: Request,
    outcome: str = Query(...),
    amount: str = Query(..., description="Stake in whole tokens."),
) -> EstimateView:
    """Preview the payout a new stake would receive at current pools."""

    ledger = _registry(request).get(event_id)
    chosen = ledger.info.market_type.validate_outcome(coerce_outcome(outcome))
    stake = parse_amount(amount)
    state = ledger.state()
    preview = estimate_payout(stake, state.pool_for(chosen), state.total_pool)
    return EstimateView(
        outcome=chosen,
        amount=str(stake),
        odds=str(preview.odds),
        payout=str(preview.payout),
        payout_display=format_amount(preview.payout),
    )


@router.get("/{event_id}/settlement")
async def settlement(event_id: str, request: Request) -> SettlementView:
    """Payouts owed by a resolved or cancelled market."""

    snapshot = _registry(request).get(event_id).snapshot()
    instructions = compute_payouts(snapshot.state, snapshot.bets)
    summary = summarize_settlement(snapshot.state, instructions)
    return SettlementView(
        event_id=event_id,
        status=str(snapshot.state.status),
        total_pool=str(summary.total_pool),
        winning_pool=str(summary.winning_pool),
        num_winners=summary.num_winners,
        distributed=str(summary.distributed),
        dust=str(summary.dust),
        orphaned=str(summary.orphaned),
        payouts=[_payout_view(instruction) for instruction in instructions],
    )


async def lock_closed_markets(registry: MarketRegistry, store: SettlementStore | None) -> list[str]:
    """Lock markets whose betting window has passed and persist them."""

    locked = registry.lock_closed_markets()
    if store is not None:
        for event_id in locked:
            await store.save_market(registry.get(event_id).snapshot())
    if locked:
        logger.info("closed_markets_locked", event_ids=locked)
    return locked


async def _lock_sweep(
    registry: MarketRegistry,
    store: SettlementStore | None,
    stop: asyncio.Event,
    interval: float,
) -> None:
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            try:
                await lock_closed_markets(registry, store)
            except Exception:
                logger.exception("lock_sweep_failed")


def _lifespan(
    registry: MarketRegistry,
    store: SettlementStore | None,
    lock_interval_seconds: float,
):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if store is not None:
            await store.init()
            snapshots = await store.list_markets()
            for snapshot in snapshots:
                registry.restore(snapshot)
            logger.info("markets_restored", count=len(snapshots))
        await lock_closed_markets(registry, store)

        stop = asyncio.Event()
        sweep = asyncio.create_task(_lock_sweep(registry, store, stop, lock_interval_seconds))
        try:
            yield
        finally:
            stop.set()
            await sweep
            if store is not None:
                await store.close()

    return lifespan


def build_app(
    registry: MarketRegistry | None = None,
    *,
    store: SettlementStore | None = None,
    lock_interval_seconds: float = DEFAULT_LOCK_INTERVAL_SECONDS,
) -> FastAPI:
    """Return configured FastAPI application.

    With ``store`` the markets are restored on startup and saved after every
    change. Open markets past their betting close time are locked every
    ``lock_interval_seconds``.
    """

    if registry is None:
        registry = MarketRegistry(allowed_prefixes=get_settings().event_id_prefixes)
    app = create_app("markets", lifespan=_lifespan(registry, store, lock_interval_seconds))
    app.state.registry = registry
    app.state.store = store
    app.include_router(router)
    return app


__all__ = ["DEFAULT_LOCK_INTERVAL_SECONDS", "build_app", "router"]
