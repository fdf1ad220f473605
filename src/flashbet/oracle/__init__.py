"""Oracle collaborators and the resolution saga."""

from flashbet.oracle.graphql import GraphQLLedgerClient
from flashbet.oracle.local import InProcessLedger
from flashbet.oracle.ports import BalanceBackend, MarketBackend, OracleLedger
from flashbet.oracle.saga import ResolutionSaga, RetryPolicy, SagaReport, SagaStep

__all__ = [
    "BalanceBackend",
    "GraphQLLedgerClient",
    "InProcessLedger",
    "MarketBackend",
    "OracleLedger",
    "ResolutionSaga",
    "RetryPolicy",
    "SagaReport",
    "SagaStep",
]
