"""Tests for the oracle resolution saga."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from flashbet.database.store import InMemorySettlementStore
from flashbet.domain.errors import (
    PartialPayoutFailure,
    ResolutionInProgressError,
    TransportError,
)
from flashbet.domain.markets import Bettor, EventResult, Outcome, PayoutInstruction, Score, StatusKind
from flashbet.markets.registry import MarketRegistry
from flashbet.oracle.local import InProcessLedger
from flashbet.oracle.saga import ResolutionSaga, RetryPolicy, SagaStep

FAST = RetryPolicy(max_attempts=3, backoff_seconds=0, backoff_max_seconds=0)
EVENT_ID = "mlb_2025_finals"


@pytest.fixture
def backend(market_info, before_close) -> InProcessLedger:
    registry = MarketRegistry(clock=before_close)
    ledger = registry.create_market(market_info)
    ledger.place_bet(Outcome.HOME, 300, Bettor(owner="alice"))
    ledger.place_bet(Outcome.AWAY, 100, Bettor(owner="bob"))
    ledger.place_bet(Outcome.AWAY, 50, Bettor(owner="carol"))
    ledger.place_bet(Outcome.DRAW, 50, Bettor(owner="dave"))
    return InProcessLedger(registry)


@pytest.fixture
def store() -> InMemorySettlementStore:
    return InMemorySettlementStore()


@pytest.fixture
def result() -> EventResult:
    return EventResult(
        event_id=EVENT_ID,
        outcome=Outcome.AWAY,
        score=Score(home=2, away=5),
        timestamp=datetime(2030, 6, 1, 21, 0, tzinfo=UTC),
    )


def make_saga(backend, store, *, oracle=None, markets=None, balances=None) -> ResolutionSaga:
    return ResolutionSaga(
        oracle or backend,
        markets or backend,
        balances or backend,
        store,
        retry_policy=FAST,
    )


@pytest.mark.asyncio
async def test_full_run_publishes_resolves_and_pays(backend, store, result):
    report = await make_saga(backend, store).run(result)

    assert report.completed
    assert report.completed_steps == [SagaStep.PUBLISHED, SagaStep.RESOLVED, SagaStep.DISTRIBUTED]
    assert backend.get_result(EVENT_ID) == result
    assert backend.registry.get(EVENT_ID).status.winner is Outcome.AWAY
    # floor(100 * 500 / 150) and floor(50 * 500 / 150)
    assert backend.balance_of("bob") == 333
    assert backend.balance_of("carol") == 166
    assert backend.balance_of("alice") == 0
    assert report.summary.dust == 1
    assert await store.get_checkpoint(EVENT_ID) == "distributed"
    assert await store.paid_bet_ids(EVENT_ID) == {2, 3}


@pytest.mark.asyncio
async def test_rerun_does_not_pay_twice(backend, store, result):
    saga = make_saga(backend, store)
    await saga.run(result)
    report = await saga.run(result)

    assert report.completed
    assert report.resumed_from is SagaStep.DISTRIBUTED
    assert report.completed_steps == []
    assert len(backend.credits) == 2


@pytest.mark.asyncio
async def test_failed_credit_does_not_block_siblings(backend, store, result):
    async def flaky_credit(instruction: PayoutInstruction) -> None:
        if instruction.owner == "bob":
            raise TransportError("user chain unreachable")
        await backend.credit_payout(instruction)

    balances = MagicMock()
    balances.credit_payout = AsyncMock(side_effect=flaky_credit)
    report = await make_saga(backend, store, balances=balances).run(result)

    assert not report.completed
    assert report.failed_step is SagaStep.DISTRIBUTED
    assert report.failed == [(2, "user chain unreachable")]
    assert [p.owner for p in report.succeeded] == ["carol"]
    assert balances.credit_payout.await_count == 4  # three attempts for bob, one for carol
    assert await store.get_checkpoint(EVENT_ID) == "resolved"
    with pytest.raises(PartialPayoutFailure) as excinfo:
        report.raise_for_failures()
    assert excinfo.value.failures == [(2, "user chain unreachable")]

    retry = await make_saga(backend, store).run(result)
    assert retry.completed
    assert retry.resumed_from is SagaStep.RESOLVED
    assert retry.skipped == [3]
    assert [p.owner for p in retry.succeeded] == ["bob"]
    assert backend.balance_of("bob") == 333
    assert backend.balance_of("carol") == 166


@pytest.mark.asyncio
async def test_transport_errors_are_retried(backend, store, result):
    oracle = MagicMock()
    oracle.publish_result = AsyncMock(side_effect=[TransportError("timeout"), None])
    report = await make_saga(backend, store, oracle=oracle).run(result)

    assert report.completed
    assert oracle.publish_result.await_count == 2


@pytest.mark.asyncio
async def test_publish_failure_aborts_saga(backend, store, result):
    oracle = MagicMock()
    oracle.publish_result = AsyncMock(side_effect=TransportError("oracle down"))
    report = await make_saga(backend, store, oracle=oracle).run(result)

    assert report.failed_step is SagaStep.PUBLISHED
    assert report.error == "oracle down"
    assert oracle.publish_result.await_count == FAST.max_attempts
    assert backend.registry.get(EVENT_ID).status.kind is StatusKind.OPEN
    assert await store.get_checkpoint(EVENT_ID) is None
    assert backend.credits == []


@pytest.mark.asyncio
async def test_resolve_failure_resumes_without_republishing(backend, store, result):
    markets = MagicMock()
    markets.resolve_market = AsyncMock(side_effect=TransportError("market chain down"))
    first = await make_saga(backend, store, markets=markets).run(result)
    assert first.failed_step is SagaStep.RESOLVED
    assert await store.get_checkpoint(EVENT_ID) == "published"

    oracle = MagicMock()
    oracle.publish_result = AsyncMock()
    second = await make_saga(backend, store, oracle=oracle).run(result)
    assert second.completed
    assert second.completed_steps == [SagaStep.RESOLVED, SagaStep.DISTRIBUTED]
    oracle.publish_result.assert_not_awaited()


@pytest.mark.asyncio
async def test_duplicate_publish_is_tolerated(backend, store, result):
    await backend.publish_result(result)
    report = await make_saga(backend, store).run(result)
    assert report.completed


@pytest.mark.asyncio
async def test_market_already_resolved_to_same_outcome_continues(backend, store, result):
    backend.registry.get(EVENT_ID).resolve(Outcome.AWAY)
    report = await make_saga(backend, store).run(result)
    assert report.completed
    assert backend.balance_of("bob") == 333


@pytest.mark.asyncio
async def test_market_resolved_to_other_outcome_fails(backend, store, result):
    backend.registry.get(EVENT_ID).resolve(Outcome.HOME)
    report = await make_saga(backend, store).run(result)
    assert report.failed_step is SagaStep.RESOLVED
    assert "Resolved(Home)" in report.error
    assert backend.credits == []


@pytest.mark.asyncio
async def test_cancelled_market_refunds(backend, store, result):
    backend.registry.get(EVENT_ID).cancel()
    report = await make_saga(backend, store).run(result)
    assert report.completed
    assert backend.balance_of("alice") == 300
    assert backend.balance_of("dave") == 50


@pytest.mark.asyncio
async def test_unknown_market_aborts(backend, store, result):
    other = result.model_copy(update={"event_id": "nba_unknown"})
    report = await make_saga(backend, store).run(other)
    assert report.failed_step is SagaStep.RESOLVED
    assert "does not exist" in report.error
    assert await store.get_checkpoint("nba_unknown") == "published"


@pytest.mark.asyncio
async def test_zero_winners_completes_without_payouts(backend, store, result):
    info = backend.registry.get(EVENT_ID).info.model_copy(update={"event_id": "mlb_empty_draw"})
    ledger = backend.registry.create_market(info)
    ledger.place_bet(Outcome.HOME, 40, Bettor(owner="erin"))
    draw = result.model_copy(update={"event_id": "mlb_empty_draw", "outcome": Outcome.DRAW})

    report = await make_saga(backend, store).run(draw)
    assert report.completed
    assert report.succeeded == []
    assert report.summary.orphaned == 40


@pytest.mark.asyncio
async def test_concurrent_resolution_is_rejected(backend, store, result):
    gate = asyncio.Event()

    async def slow_publish(_: EventResult) -> None:
        await gate.wait()

    oracle = MagicMock()
    oracle.publish_result = AsyncMock(side_effect=slow_publish)
    saga = make_saga(backend, store, oracle=oracle)

    first = asyncio.create_task(saga.run(result))
    while not saga.is_running(EVENT_ID):
        await asyncio.sleep(0)
    with pytest.raises(ResolutionInProgressError):
        await saga.run(result)

    gate.set()
    report = await first
    assert report.completed
    assert not saga.is_running(EVENT_ID)


class FlakyStore(InMemorySettlementStore):
    """Fails the first confirmation write after a credit has gone out."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    async def record_payout(self, instruction: PayoutInstruction) -> None:
        if self.failures:
            self.failures -= 1
            raise RuntimeError("database is locked")
        await super().record_payout(instruction)


@pytest.mark.asyncio
async def test_lost_confirmation_never_pays_twice(backend, result):
    store = FlakyStore()
    saga = make_saga(backend, store)

    with pytest.raises(RuntimeError, match="database is locked"):
        await saga.run(result)
    assert backend.balance_of("bob") == 333
    assert await store.pending_bet_ids(EVENT_ID) == {2}

    second = await saga.run(result)
    assert not second.completed
    assert second.failed_step is SagaStep.DISTRIBUTED
    assert second.unconfirmed == [2]
    assert second.error == "1 payout(s) awaiting reconciliation"
    assert [p.owner for p in second.succeeded] == ["carol"]
    assert backend.balance_of("bob") == 333
    assert await store.get_checkpoint(EVENT_ID) == "resolved"

    await saga.reconcile_payout(EVENT_ID, 2, credited=True)
    third = await saga.run(result)
    assert third.completed
    assert third.skipped == [2, 3]
    assert backend.balance_of("bob") == 333
    assert len(backend.credits) == 2


@pytest.mark.asyncio
async def test_released_reservation_is_credited_on_next_run(backend, result):
    store = FlakyStore()
    saga = make_saga(backend, store)
    with pytest.raises(RuntimeError):
        await saga.run(result)
    # The operator found the first credit never landed.
    backend.balances["bob"] = 0

    await saga.reconcile_payout(EVENT_ID, 2, credited=False)
    report = await saga.run(result)
    assert report.completed
    assert backend.balance_of("bob") == 333
    assert backend.balance_of("carol") == 166


@pytest.mark.asyncio
async def test_failed_credit_releases_its_reservation(backend, store, result):
    balances = MagicMock()
    balances.credit_payout = AsyncMock(side_effect=TransportError("user chain unreachable"))
    await make_saga(backend, store, balances=balances).run(result)
    assert await store.pending_bet_ids(EVENT_ID) == set()
    assert await store.paid_bet_ids(EVENT_ID) == set()


@pytest.mark.asyncio
async def test_in_process_ledger_keeps_an_empty_registry(market_info, before_close, result):
    registry = MarketRegistry(clock=before_close)
    backend = InProcessLedger(registry)
    assert backend.registry is registry

    registry.create_market(market_info).place_bet(Outcome.AWAY, 10, Bettor(owner="alice"))
    report = await make_saga(backend, InMemorySettlementStore()).run(result)

    assert report.completed
    assert backend.balance_of("alice") == 10
