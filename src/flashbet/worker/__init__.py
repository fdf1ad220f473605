"""Oracle worker."""

from flashbet.worker.worker import OracleWorker

__all__ = ["OracleWorker"]
