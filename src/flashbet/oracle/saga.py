"""Oracle resolution saga: publish result, resolve market, distribute payouts.

Steps run in order and each completed step is checkpointed in the settlement
store, so a re-run resumes after the last completed step. Completed steps are
never rolled back. Only ``TransportError`` is retried; every other failure
aborts the remaining steps and is reported with the event id and step name.

Payout credits are independent of each other. A failed credit does not stop
its siblings, and the ``distributed`` checkpoint is only written once every
credit has gone through. Each credit is reserved in the store before it is
sent and confirmed after. Re-runs skip confirmed bets and never re-send a
reserved but unconfirmed one; those wait for ``reconcile_payout``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from flashbet.config.settings import WorkerSettings
from flashbet.database.store import SettlementStore
from flashbet.domain.errors import (
    AlreadyResolvedError,
    DuplicateResultError,
    FlashBetError,
    PartialPayoutFailure,
    ResolutionInProgressError,
    TransportError,
)
from flashbet.domain.markets import EventResult, PayoutInstruction, StatusKind
from flashbet.events.models import EventType
from flashbet.oracle.ports import BalanceBackend, MarketBackend, OracleLedger
from flashbet.settlement.payouts import SettlementSummary, compute_payouts, summarize_settlement

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SagaStep(str, Enum):
    PUBLISHED = "published"
    RESOLVED = "resolved"
    DISTRIBUTED = "distributed"


STEP_ORDER: tuple[SagaStep, ...] = (SagaStep.PUBLISHED, SagaStep.RESOLVED, SagaStep.DISTRIBUTED)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential back-off applied to transport failures within one step."""

    max_attempts: int = 3
    backoff_seconds: float = 0.5
    backoff_max_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: WorkerSettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.step_max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            backoff_max_seconds=settings.retry_backoff_max_seconds,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=self.backoff_max_seconds),
            retry=retry_if_exception_type(TransportError),
            reraise=True,
        )


@dataclass(slots=True)
class SagaReport:
    """Outcome of one saga run."""

    event_id: str
    resumed_from: SagaStep | None = None
    completed_steps: list[SagaStep] = field(default_factory=list)
    failed_step: SagaStep | None = None
    error: str | None = None
    succeeded: list[PayoutInstruction] = field(default_factory=list)
    failed: list[tuple[int, str]] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    unconfirmed: list[int] = field(default_factory=list)
    summary: SettlementSummary | None = None

    @property
    def completed(self) -> bool:
        return SagaStep.DISTRIBUTED in self.completed_steps or self.resumed_from is SagaStep.DISTRIBUTED

    def raise_for_failures(self) -> None:
        """Raise ``PartialPayoutFailure`` if any payout credit failed."""

        if self.failed:
            raise PartialPayoutFailure(self.event_id, self.failed)


class ResolutionSaga:
    """Runs the resolution steps for one event result at a time per event."""

    def __init__(
        self,
        oracle: OracleLedger,
        markets: MarketBackend,
        balances: BalanceBackend,
        store: SettlementStore,
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.oracle = oracle
        self.markets = markets
        self.balances = balances
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self._locks: dict[str, asyncio.Lock] = {}

    def is_running(self, event_id: str) -> bool:
        lock = self._locks.get(event_id)
        return lock is not None and lock.locked()

    async def run(self, result: EventResult) -> SagaReport:
        """Drive ``result`` through every step not yet completed.

        Raises:
            ResolutionInProgressError: another run for the same event is in flight.
        """

        event_id = result.event_id
        lock = self._locks.setdefault(event_id, asyncio.Lock())
        if lock.locked():
            raise ResolutionInProgressError(f"Resolution already running for {event_id}")

        async with lock:
            try:
                return await self._run_steps(result)
            finally:
                self._locks.pop(event_id, None)

    async def _run_steps(self, result: EventResult) -> SagaReport:
        event_id = result.event_id
        checkpoint = await self.store.get_checkpoint(event_id)
        resumed_from = SagaStep(checkpoint) if checkpoint else None
        report = SagaReport(event_id=event_id, resumed_from=resumed_from)
        remaining = STEP_ORDER[STEP_ORDER.index(resumed_from) + 1:] if resumed_from else STEP_ORDER

        if not remaining:
            logger.info("saga_already_complete", event_id=event_id)
            return report
        if resumed_from is not None:
            logger.info("saga_resumed", event_id=event_id, after_step=resumed_from.value)

        for step in remaining:
            try:
                finished = await self._run_step(step, result, report)
            except FlashBetError as exc:
                report.failed_step = step
                report.error = str(exc)
                logger.error(
                    "saga_step_failed",
                    event_id=event_id,
                    step=step.value,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return report
            except Exception:
                logger.exception("saga_step_crashed", event_id=event_id, step=step.value)
                raise
            if not finished:
                report.failed_step = step
                problems = []
                if report.failed:
                    problems.append(f"{len(report.failed)} payout(s) failed")
                if report.unconfirmed:
                    problems.append(f"{len(report.unconfirmed)} payout(s) awaiting reconciliation")
                report.error = ", ".join(problems)
                return report
            await self.store.save_checkpoint(event_id, step.value)
            report.completed_steps.append(step)
            logger.info("saga_step_completed", event_id=event_id, step=step.value)

        return report

    async def _run_step(self, step: SagaStep, result: EventResult, report: SagaReport) -> bool:
        if step is SagaStep.PUBLISHED:
            await self._publish(result)
            return True
        if step is SagaStep.RESOLVED:
            await self._resolve(result)
            return True
        return await self._distribute(result.event_id, report)

    async def _retry(self, operation: Callable[..., Awaitable[T]], *args: object, step: SagaStep, event_id: str) -> T:
        async for attempt in self.retry_policy.retrying():
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    logger.warning("saga_step_retry", event_id=event_id, step=step.value, attempt=number)
                return await operation(*args)
        raise AssertionError("unreachable")

    async def _publish(self, result: EventResult) -> None:
        try:
            await self._retry(self.oracle.publish_result, result, step=SagaStep.PUBLISHED, event_id=result.event_id)
        except DuplicateResultError:
            # The result was committed by an earlier run; resolution checks the outcome.
            logger.info("oracle_result_already_published", event_id=result.event_id)

    async def _resolve(self, result: EventResult) -> None:
        event_id = result.event_id
        try:
            await self._retry(self.markets.resolve_market, result, step=SagaStep.RESOLVED, event_id=event_id)
        except AlreadyResolvedError:
            snapshot = await self._retry(
                self.markets.fetch_market, event_id, step=SagaStep.RESOLVED, event_id=event_id
            )
            status = snapshot.state.status
            if status.kind is StatusKind.RESOLVED and status.winner is result.outcome:
                logger.info("market_already_resolved", event_id=event_id, outcome=result.outcome.value)
                return
            if status.kind is StatusKind.CANCELLED:
                logger.warning("market_cancelled_before_resolution", event_id=event_id)
                return
            raise AlreadyResolvedError(
                f"Market {event_id} is {status}, cannot resolve to {result.outcome.value}"
            ) from None

    async def _distribute(self, event_id: str, report: SagaReport) -> bool:
        snapshot = await self._retry(
            self.markets.fetch_market, event_id, step=SagaStep.DISTRIBUTED, event_id=event_id
        )
        instructions = compute_payouts(snapshot.state, snapshot.bets)
        report.summary = summarize_settlement(snapshot.state, instructions)
        if report.summary.orphaned:
            logger.warning(
                "winning_pool_empty",
                event_id=event_id,
                orphaned=str(report.summary.orphaned),
            )

        paid = await self.store.paid_bet_ids(event_id)
        pending = await self.store.pending_bet_ids(event_id)
        for instruction in instructions:
            if instruction.bet_id in paid:
                report.skipped.append(instruction.bet_id)
                continue
            if instruction.bet_id in pending:
                report.unconfirmed.append(instruction.bet_id)
                logger.warning(
                    "payout_unconfirmed",
                    event_id=event_id,
                    bet_id=instruction.bet_id,
                    owner=instruction.owner,
                    amount=str(instruction.amount),
                )
                continue
            await self.store.reserve_payout(instruction)
            try:
                await self._retry(
                    self.balances.credit_payout, instruction, step=SagaStep.DISTRIBUTED, event_id=event_id
                )
            except FlashBetError as exc:
                await self.store.release_payout(event_id, instruction.bet_id)
                report.failed.append((instruction.bet_id, str(exc)))
                logger.error(
                    "payout_failed",
                    event_id=event_id,
                    step=SagaStep.DISTRIBUTED.value,
                    bet_id=instruction.bet_id,
                    owner=instruction.owner,
                    amount=str(instruction.amount),
                    error=str(exc),
                )
                continue
            await self.store.record_payout(instruction)
            report.succeeded.append(instruction)
            logger.info(
                EventType.PAYOUT_DISTRIBUTED.value,
                event_id=event_id,
                bet_id=instruction.bet_id,
                owner=instruction.owner,
                amount=str(instruction.amount),
                kind=instruction.kind.value,
            )

        logger.info(
            "payouts_distributed",
            event_id=event_id,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            skipped=len(report.skipped),
            unconfirmed=len(report.unconfirmed),
            dust=str(report.summary.dust),
        )
        return not report.failed and not report.unconfirmed

    async def reconcile_payout(self, event_id: str, bet_id: int, *, credited: bool) -> None:
        """Settle a reserved payout whose credit was never confirmed.

        With ``credited`` the payout is recorded as issued; otherwise the
        reservation is dropped and the next run sends the credit again.
        """

        if not credited:
            await self.store.release_payout(event_id, bet_id)
            logger.info("payout_reservation_released", event_id=event_id, bet_id=bet_id)
            return
        snapshot = await self._retry(
            self.markets.fetch_market, event_id, step=SagaStep.DISTRIBUTED, event_id=event_id
        )
        instructions = compute_payouts(snapshot.state, snapshot.bets)
        instruction = next((item for item in instructions if item.bet_id == bet_id), None)
        if instruction is None:
            raise ValueError(f"No payout owed for bet {bet_id} on {event_id}")
        await self.store.record_payout(instruction)
        logger.info("payout_confirmed", event_id=event_id, bet_id=bet_id, amount=str(instruction.amount))


__all__ = ["RetryPolicy", "ResolutionSaga", "STEP_ORDER", "SagaReport", "SagaStep"]
