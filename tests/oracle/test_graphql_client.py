"""Tests for the GraphQL ledger client."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from flashbet.config.settings import LedgerSettings
from flashbet.domain.errors import AlreadyResolvedError, DuplicateResultError, TransportError
from flashbet.domain.markets import EventResult, Outcome, PayoutInstruction, Score, StatusKind
from flashbet.oracle.graphql import GraphQLLedgerClient, from_micros, to_micros

SETTINGS = LedgerSettings(
    graphql_url="http://node:8080/",
    oracle_chain_id="oracle-chain",
    oracle_app_id="oracle-app",
    market_chain_id="market-chain",
    market_app_id="market-app",
    user_chain_id="user-chain",
    user_app_id="user-app",
)

RESULT = EventResult(
    event_id='mlb"}){ evil }',
    outcome=Outcome.AWAY,
    score=Score(home=2, away=5),
    timestamp=datetime(2030, 6, 1, 21, 0, tzinfo=UTC),
)


def graphql_response(payload: dict, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload, request=httpx.Request("POST", "http://node:8080"))


@pytest.fixture
async def client():
    http = httpx.AsyncClient()
    ledger = GraphQLLedgerClient(SETTINGS, client=http)
    yield ledger
    await http.aclose()


def test_micros_conversion():
    moment = datetime(2030, 6, 1, 21, 0, 0, 123456, tzinfo=UTC)
    assert to_micros(moment) == 1_906_578_000_123_456
    assert from_micros(to_micros(moment)) == moment


@pytest.mark.asyncio
async def test_publish_sends_result_as_variables(client):
    with patch.object(client._client, "post", new=AsyncMock(return_value=graphql_response({"data": {}}))) as post:
        await client.publish_result(RESULT)

    url = post.await_args.args[0]
    body = post.await_args.kwargs["json"]
    assert url == "http://node:8080/chains/oracle-chain/applications/oracle-app"
    assert body["operationName"] == "PublishResult"
    assert "evil" not in body["query"]
    assert body["variables"]["result"] == {
        "eventId": RESULT.event_id,
        "outcome": "AWAY",
        "score": {"home": 2, "away": 5},
        "timestamp": to_micros(RESULT.timestamp),
    }


@pytest.mark.asyncio
async def test_resolve_targets_market_application(client):
    with patch.object(client._client, "post", new=AsyncMock(return_value=graphql_response({"data": {}}))) as post:
        await client.resolve_market(RESULT)

    assert post.await_args.args[0].endswith("/chains/market-chain/applications/market-app")
    assert post.await_args.kwargs["json"]["operationName"] == "ProcessOracleResult"


@pytest.mark.asyncio
async def test_credit_payout_uses_bettor_chain(client):
    instruction = PayoutInstruction(
        event_id="evt", bet_id=4, owner="bob", chain_id="bob-chain", amount=10**30
    )
    with patch.object(client._client, "post", new=AsyncMock(return_value=graphql_response({"data": {}}))) as post:
        await client.credit_payout(instruction)

    assert post.await_args.args[0].endswith("/chains/bob-chain/applications/user-app")
    payout = post.await_args.kwargs["json"]["variables"]["payout"]
    assert payout["amount"] == str(10**30)
    assert payout["betId"] == 4


@pytest.mark.asyncio
async def test_fetch_market_builds_snapshot(client):
    placed = to_micros(datetime(2030, 5, 1, tzinfo=UTC))
    payload = {
        "data": {
            "market": {
                "eventId": "evt",
                "description": "Yankees vs Dodgers",
                "eventTime": to_micros(datetime(2030, 6, 1, tzinfo=UTC)),
                "marketType": "MATCH_WINNER",
                "marketLine": None,
                "homeTeam": "Yankees",
                "awayTeam": "Dodgers",
                "status": "Resolved(Away)",
                "totalPool": "500",
                "homePool": "300",
                "awayPool": "150",
                "drawPool": "50",
                "bets": [
                    {"betId": 1, "user": "alice", "userChain": "a", "outcome": "HOME", "amount": "300", "timestamp": placed},
                    {"betId": 2, "user": "bob", "userChain": "b", "outcome": "AWAY", "amount": "150", "timestamp": placed},
                    {"betId": 3, "user": "dave", "userChain": None, "outcome": "DRAW", "amount": "50", "timestamp": placed},
                ],
            }
        }
    }
    with patch.object(client._client, "post", new=AsyncMock(return_value=graphql_response(payload))) as post:
        snapshot = await client.fetch_market("evt")

    assert post.await_args.kwargs["json"]["variables"] == {"eventId": "evt"}
    state = snapshot.state
    assert state.status.kind is StatusKind.RESOLVED
    assert state.status.winner is Outcome.AWAY
    assert state.pools == {Outcome.HOME: 300, Outcome.AWAY: 150, Outcome.DRAW: 50}
    assert state.total_pool == 500
    assert state.bet_count == 3
    assert snapshot.bets[1].owner == "bob"
    assert snapshot.bets[1].chain_id == "b"


@pytest.mark.asyncio
async def test_missing_market_is_a_transport_error(client):
    with patch.object(client._client, "post", new=AsyncMock(return_value=graphql_response({"data": {"market": None}}))):
        with pytest.raises(TransportError):
            await client.fetch_market("evt")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message,error",
    [
        ("Market already resolved", AlreadyResolvedError),
        ("Result already published for event", DuplicateResultError),
        ("chain is not active", TransportError),
    ],
)
async def test_graphql_errors_are_mapped(client, message, error):
    response = graphql_response({"data": None, "errors": [{"message": message}]})
    with patch.object(client._client, "post", new=AsyncMock(return_value=response)):
        with pytest.raises(error):
            await client.resolve_market(RESULT)


@pytest.mark.asyncio
async def test_http_failures_are_transport_errors(client):
    with patch.object(client._client, "post", new=AsyncMock(return_value=graphql_response({}, status_code=502))):
        with pytest.raises(TransportError):
            await client.publish_result(RESULT)

    with patch.object(client._client, "post", new=AsyncMock(side_effect=httpx.ConnectError("refused"))):
        with pytest.raises(TransportError):
            await client.publish_result(RESULT)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"totalPool": "1.5"},
        {"status": "Frozen"},
        {"status": "Resolved(Overtime)"},
    ],
)
async def test_unreadable_market_is_a_transport_error(client, overrides):
    market = {
        "eventId": "evt",
        "eventTime": to_micros(datetime(2030, 6, 1, tzinfo=UTC)),
        "status": "Open",
        "totalPool": "0",
        **overrides,
    }
    response = graphql_response({"data": {"market": market}})
    with patch.object(client._client, "post", new=AsyncMock(return_value=response)):
        with pytest.raises(TransportError, match="unreadable snapshot for evt"):
            await client.fetch_market("evt")
