"""Configuration models and loading utilities for the settlement engine and worker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)


class DatabaseSettings(BaseSettings):
    """Persistence for dedup sets, saga checkpoints and market snapshots."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    dsn: str = Field(
        "sqlite+aiosqlite:///flashbet.db",
        description="SQLAlchemy async DSN for the settlement store.",
    )
    echo: bool = Field(False, description="Log every SQL statement.")


class LedgerSettings(BaseSettings):
    """Endpoints of the oracle, market and user applications on the ledger backend."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    graphql_url: str = Field(
        "http://localhost:8080",
        description="Base URL of the ledger node's GraphQL service.",
    )
    oracle_chain_id: str = Field("", description="Chain hosting the oracle application.")
    oracle_app_id: str = Field("", description="Oracle application id.")
    market_chain_id: str = Field("", description="Chain hosting the market application.")
    market_app_id: str = Field("", description="Market application id.")
    user_chain_id: str = Field("", description="Chain hosting the user application that receives payouts.")
    user_app_id: str = Field("", description="User application id.")
    request_timeout_seconds: float = Field(10.0, description="Per-request HTTP timeout.")

    def endpoint(self, chain_id: str, app_id: str) -> str:
        return f"{self.graphql_url.rstrip('/')}/chains/{chain_id}/applications/{app_id}"


class FeedSettings(BaseSettings):
    """Source of completed game results."""

    model_config = SettingsConfigDict(env_prefix="FEED_")

    mode: Literal["mock", "live"] = Field("mock", description="Use mock results or The Odds API.")
    odds_api_key: str | None = Field(default=None, description="The Odds API key for live mode.")
    odds_api_base_url: str = Field(
        "https://api.the-odds-api.com/v4",
        description="The Odds API base URL.",
    )
    sport_key: str = Field("baseball_mlb", description="The Odds API sport key to poll.")
    days_from: int = Field(1, ge=1, le=3, description="How many days back to request scores for.")
    quota_warning_threshold: int = Field(100, description="Warn when remaining API requests drop below this.")


class WorkerSettings(BaseSettings):
    """Polling cadence and saga retry policy."""

    model_config = SettingsConfigDict(env_prefix="WORKER_")

    poll_interval_seconds: float = Field(60.0, gt=0, description="Delay between feed polls.")
    step_max_attempts: int = Field(3, ge=1, description="Attempts per saga step on transport errors.")
    retry_backoff_seconds: float = Field(0.5, ge=0, description="Initial exponential back-off.")
    retry_backoff_max_seconds: float = Field(5.0, ge=0, description="Back-off ceiling.")


_REQUIRED_LEDGER_FIELDS = ("oracle_chain_id", "oracle_app_id", "market_chain_id", "market_app_id", "user_app_id")


@dataclass(slots=True)
class Settings:
    """Aggregated application settings loaded from environment variables."""

    database: DatabaseSettings
    ledger: LedgerSettings
    feed: FeedSettings
    worker: WorkerSettings
    log_level: str = "INFO"
    log_format: str = "json"
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    event_id_prefixes: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> Settings:
        """Hydrate the composed settings model from environment variables."""

        feed = FeedSettings()
        if feed.mode == "live" and not feed.odds_api_key:
            logger.warning("odds_api_key_missing", fallback_mode="mock")
            feed = feed.model_copy(update={"mode": "mock"})

        allowed_origins_raw = os.getenv("ALLOWED_ORIGINS", "*")
        allowed_origins = [
            origin.strip()
            for origin in allowed_origins_raw.split(",")
            if origin.strip()
        ]
        if not allowed_origins:
            allowed_origins = ["*"]

        prefixes_raw = os.getenv("EVENT_ID_PREFIXES", "")
        event_id_prefixes = [prefix.strip() for prefix in prefixes_raw.split(",") if prefix.strip()]

        return cls(
            database=DatabaseSettings(),
            ledger=LedgerSettings(),
            feed=feed,
            worker=WorkerSettings(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            allowed_origins=allowed_origins,
            event_id_prefixes=event_id_prefixes,
        )

    def missing_ledger_fields(self) -> list[str]:
        """Return the required ledger ids that are not configured."""

        return [name for name in _REQUIRED_LEDGER_FIELDS if not getattr(self.ledger, name)]


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None


__all__ = [
    "DatabaseSettings",
    "FeedSettings",
    "LedgerSettings",
    "Settings",
    "WorkerSettings",
    "get_settings",
    "reset_settings",
]
