"""Run the markets API with uvicorn."""

import os

import uvicorn

from flashbet.config import get_settings
from flashbet.database.store import SqlSettlementStore
from flashbet.services.markets.app import build_app


def main() -> None:
    settings = get_settings()
    app = build_app(store=SqlSettlementStore(settings.database.dsn))
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")), log_level="info")


if __name__ == "__main__":
    main()
