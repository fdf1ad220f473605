"""Common helpers for FastAPI-based services."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flashbet.config import get_settings
from flashbet.domain.errors import (
    AlreadyResolvedError,
    FlashBetError,
    MarketExistsError,
    MarketNotFoundError,
    MarketNotOpenError,
    MarketNotSettledError,
)
from flashbet.logging import configure_logging

Lifespan = Callable[[FastAPI], AbstractAsyncContextManager[None]]

SERVICE_DESCRIPTION = {
    "markets": "Creates markets and settles them from the bets placed on them.",
}

_STATUS_CODES: tuple[tuple[type[FlashBetError], int], ...] = (
    (MarketNotFoundError, 404),
    (MarketExistsError, 409),
    (MarketNotOpenError, 409),
    (AlreadyResolvedError, 409),
    (MarketNotSettledError, 409),
)


def status_code_for(exc: FlashBetError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    if isinstance(exc, ValueError):
        return 400
    return 500


def create_app(service_name: str, *, lifespan: Lifespan | None = None) -> FastAPI:
    """Create a FastAPI app configured for the given service."""

    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title=f"FlashBet {service_name.title()} Service",
        description=SERVICE_DESCRIPTION.get(service_name, ""),
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FlashBetError)
    async def flashbet_error(request: Request, exc: FlashBetError) -> JSONResponse:
        return JSONResponse(
            status_code=status_code_for(exc),
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        """Basic health endpoint."""

        return {"status": "ok", "service": service_name}

    return app


__all__ = ["create_app", "status_code_for"]
