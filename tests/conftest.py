"""Test configuration and fixtures."""

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Ensure the src/ directory is on sys.path so `import flashbet` works without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if SRC_PATH.exists():
    sys.path.insert(0, str(SRC_PATH))

from flashbet.config import reset_settings  # noqa: E402
from flashbet.domain.markets import MarketInfo  # noqa: E402

EVENT_TIME = datetime(2030, 6, 1, 18, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def market_info() -> MarketInfo:
    return MarketInfo(
        event_id="mlb_2025_finals",
        description="Yankees vs Dodgers",
        event_time=EVENT_TIME,
        home_team="Yankees",
        away_team="Dodgers",
    )


@pytest.fixture
def before_close():
    """Clock pinned an hour before betting closes."""

    return lambda: EVENT_TIME - timedelta(hours=1)
