"""GraphQL client for the oracle, market and user applications on the ledger backend.

Requests are typed pydantic models sent as GraphQL variables; nothing is
interpolated into query text.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from flashbet.config import get_settings
from flashbet.config.settings import LedgerSettings
from flashbet.domain.errors import AlreadyResolvedError, DuplicateResultError, TransportError
from flashbet.domain.markets import (
    Bet,
    EventResult,
    MarketInfo,
    MarketKind,
    MarketSnapshot,
    MarketState,
    MarketStatus,
    MarketType,
    Outcome,
    PayoutInstruction,
)

logger = structlog.get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

PUBLISH_RESULT = """
mutation PublishResult($result: EventResultInput!) {
  publishResult(result: $result)
}
"""

PROCESS_ORACLE_RESULT = """
mutation ProcessOracleResult($result: EventResultInput!) {
  processOracleResult(result: $result)
}
"""

RECEIVE_PAYOUT = """
mutation ReceivePayout($payout: PayoutInput!) {
  receivePayout(payout: $payout)
}
"""

MARKET_SNAPSHOT = """
query MarketSnapshot($eventId: String!) {
  market(eventId: $eventId) {
    eventId
    description
    eventTime
    marketType
    marketLine
    homeTeam
    awayTeam
    status
    totalPool
    homePool
    awayPool
    drawPool
    bets { betId user userChain outcome amount timestamp }
  }
}
"""


def to_micros(value: datetime) -> int:
    """Ledger timestamps are microseconds since the epoch."""

    return (value - _EPOCH) // timedelta(microseconds=1)


def from_micros(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=value)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GraphQLRequest(BaseModel):
    query: str
    variables: dict[str, Any] = Field(default_factory=dict)
    operation_name: Optional[str] = Field(default=None, serialization_alias="operationName")


class ScoreInput(_CamelModel):
    home: int
    away: int


class EventResultInput(_CamelModel):
    event_id: str
    outcome: Outcome
    score: Optional[ScoreInput] = None
    timestamp: int

    @classmethod
    def from_result(cls, result: EventResult) -> EventResultInput:
        score = ScoreInput(home=result.score.home, away=result.score.away) if result.score else None
        return cls(
            event_id=result.event_id,
            outcome=result.outcome,
            score=score,
            timestamp=to_micros(result.timestamp),
        )


class PayoutInput(_CamelModel):
    event_id: str
    bet_id: int
    owner: str
    amount: str
    timestamp: int

    @classmethod
    def from_instruction(cls, instruction: PayoutInstruction, now: datetime) -> PayoutInput:
        return cls(
            event_id=instruction.event_id,
            bet_id=instruction.bet_id,
            owner=instruction.owner,
            amount=str(instruction.amount),
            timestamp=to_micros(now),
        )


class BetPayload(_CamelModel):
    bet_id: int
    user: str
    user_chain: Optional[str] = None
    outcome: Outcome
    amount: int
    timestamp: int


class MarketPayload(_CamelModel):
    event_id: str
    description: str = ""
    event_time: int
    market_type: MarketKind = MarketKind.MATCH_WINNER
    market_line: Optional[int] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    status: str
    total_pool: int
    home_pool: int = 0
    away_pool: int = 0
    draw_pool: int = 0
    bets: list[BetPayload] = Field(default_factory=list)

    def to_snapshot(self) -> MarketSnapshot:
        market_type = MarketType(kind=self.market_type, line=self.market_line)
        info = MarketInfo(
            event_id=self.event_id,
            description=self.description,
            event_time=from_micros(self.event_time),
            market_type=market_type,
            home_team=self.home_team,
            away_team=self.away_team,
        )
        recorded = {Outcome.HOME: self.home_pool, Outcome.AWAY: self.away_pool, Outcome.DRAW: self.draw_pool}
        pools = {
            outcome: amount
            for outcome, amount in recorded.items()
            if outcome in market_type.outcomes or amount
        }
        state = MarketState(
            info=info,
            status=MarketStatus.parse(self.status),
            pools=pools,
            total_pool=self.total_pool,
            bet_count=len(self.bets),
        )
        bets = tuple(
            Bet(
                bet_id=bet.bet_id,
                event_id=self.event_id,
                owner=bet.user,
                chain_id=bet.user_chain,
                outcome=bet.outcome,
                amount=bet.amount,
                placed_at=from_micros(bet.timestamp),
            )
            for bet in self.bets
        )
        return MarketSnapshot(state=state, bets=bets)


class GraphQLLedgerClient:
    """Ledger backend reached over GraphQL/HTTP."""

    def __init__(
        self,
        settings: LedgerSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings().ledger
        self._client_provided = client is not None
        self._client = client or httpx.AsyncClient(
            timeout=self.settings.request_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        """Dispose the HTTP client if owned by this instance."""

        if not self._client_provided:
            await self._client.aclose()

    @property
    def oracle_endpoint(self) -> str:
        return self.settings.endpoint(self.settings.oracle_chain_id, self.settings.oracle_app_id)

    @property
    def market_endpoint(self) -> str:
        return self.settings.endpoint(self.settings.market_chain_id, self.settings.market_app_id)

    def user_endpoint(self, chain_id: str | None = None) -> str:
        return self.settings.endpoint(chain_id or self.settings.user_chain_id, self.settings.user_app_id)

    async def publish_result(self, result: EventResult) -> None:
        request = GraphQLRequest(
            query=PUBLISH_RESULT,
            variables={"result": EventResultInput.from_result(result).model_dump(by_alias=True, mode="json")},
            operation_name="PublishResult",
        )
        await self._execute(self.oracle_endpoint, request)
        logger.info("oracle_result_published", event_id=result.event_id, outcome=result.outcome.value)

    async def resolve_market(self, result: EventResult) -> None:
        request = GraphQLRequest(
            query=PROCESS_ORACLE_RESULT,
            variables={"result": EventResultInput.from_result(result).model_dump(by_alias=True, mode="json")},
            operation_name="ProcessOracleResult",
        )
        await self._execute(self.market_endpoint, request)
        logger.info("market_result_processed", event_id=result.event_id)

    async def fetch_market(self, event_id: str) -> MarketSnapshot:
        request = GraphQLRequest(
            query=MARKET_SNAPSHOT,
            variables={"eventId": event_id},
            operation_name="MarketSnapshot",
        )
        data = await self._execute(self.market_endpoint, request)
        market = data.get("market")
        if market is None:
            raise TransportError(f"Market query returned no data for {event_id}")
        try:
            return MarketPayload.model_validate(market).to_snapshot()
        except (ValidationError, ValueError) as exc:
            raise TransportError(f"Market query returned an unreadable snapshot for {event_id}: {exc}") from exc

    async def credit_payout(self, instruction: PayoutInstruction) -> None:
        payout = PayoutInput.from_instruction(instruction, datetime.now(UTC))
        request = GraphQLRequest(
            query=RECEIVE_PAYOUT,
            variables={"payout": payout.model_dump(by_alias=True, mode="json")},
            operation_name="ReceivePayout",
        )
        await self._execute(self.user_endpoint(instruction.chain_id), request)

    async def _execute(self, endpoint: str, request: GraphQLRequest) -> dict[str, Any]:
        try:
            response = await self._client.post(endpoint, json=request.model_dump(by_alias=True, mode="json"))
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise TransportError(f"{request.operation_name} request failed: {exc}") from exc
        except ValueError as exc:
            raise TransportError(f"{request.operation_name} returned invalid JSON: {exc}") from exc

        errors = body.get("errors")
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            logger.warning(
                "graphql_errors",
                operation=request.operation_name,
                endpoint=endpoint,
                errors=messages,
            )
            lowered = messages.lower()
            if "already resolved" in lowered:
                raise AlreadyResolvedError(messages)
            if "already published" in lowered:
                raise DuplicateResultError(messages)
            raise TransportError(f"{request.operation_name} failed: {messages}")
        return body.get("data") or {}


__all__ = [
    "EventResultInput",
    "GraphQLLedgerClient",
    "GraphQLRequest",
    "MarketPayload",
    "PayoutInput",
    "from_micros",
    "to_micros",
]
