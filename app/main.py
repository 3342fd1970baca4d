"""FastAPI application entry point."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm.exc import StaleDataError

from app.dependencies import get_api_key
from app.routes import changes, factory, missions, players
from app.routes.health import get_db_info
from app.schemas.common import ErrorResponse, HealthResponse
from config import Settings, get_settings
from db.connection import init_database
from missionfactory.services._types import DbInfoDict
from missionfactory.services.errors import (
    AuthorizationError,
    CapacityError,
    InvalidMissionParamsError,
    InvalidStateError,
    MissionError,
    MissionNotFoundError,
    OwnershipProposalError,
    PaymentError,
    PayoutInvariantError,
    RateLimitError,
    ReentrantCallError,
    TimingError,
    TransferFailedError,
)

logger: logging.Logger = logging.getLogger(__name__)

# First match wins; order subclasses before their bases.
_ERROR_STATUS: tuple[tuple[type[MissionError], int], ...] = (
    (MissionNotFoundError, 404),
    (AuthorizationError, 403),
    (RateLimitError, 429),
    (TransferFailedError, 502),
    (PayoutInvariantError, 500),
    (PaymentError, 400),
    (InvalidMissionParamsError, 400),
    (TimingError, 409),
    (CapacityError, 409),
    (InvalidStateError, 409),
    (OwnershipProposalError, 409),
    (ReentrantCallError, 409),
)


def status_for(exc: MissionError) -> int:
    for cls, code in _ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return 400


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = get_settings()
    logger.info("DB: %s", settings.database.db_info_for_logging())

    init_database()
    yield


def create_app() -> FastAPI:
    app: FastAPI = FastAPI(
        title="Mission Factory",
        version="0.1.0",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    register_error_handlers(app)

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/health/db", dependencies=[Depends(get_api_key)])
    def health_db() -> DbInfoDict:
        return get_db_info()

    app.include_router(missions.router)
    app.include_router(players.router)
    app.include_router(changes.router)
    app.include_router(factory.router)

    return app


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MissionError)
    async def _on_mission_error(request: Request, exc: MissionError) -> JSONResponse:
        code: int = status_for(exc)
        if code >= 500:
            logger.error("Mission invariant violated: %s %s", exc.message, exc.context)
        return JSONResponse(
            status_code=code,
            content=ErrorResponse(
                detail=exc.message, type=type(exc).__name__, context=exc.context
            ).model_dump(),
        )

    @app.exception_handler(StaleDataError)
    async def _on_stale_write(request: Request, exc: StaleDataError) -> JSONResponse:
        logger.warning("Concurrent update rejected: %s", exc)
        return JSONResponse(
            status_code=409,
            content=ErrorResponse(
                detail="Mission state changed concurrently, retry the request",
                type="ConcurrentUpdateError",
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def _on_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled: %s", exc)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(detail=str(exc), type=type(exc).__name__).model_dump(),
        )


app: FastAPI = create_app()


def start() -> None:
    """Entry point for missionfactory-api."""
    project_root: Path = Path(__file__).resolve().parent.parent
    os.chdir(project_root)

    candidate: Path = project_root / ".env"
    if candidate.exists():
        load_dotenv(candidate, override=False)

    reload: bool = os.environ.get("MISSIONS_RELOAD", "false").lower() in ("1", "true", "yes")
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=reload,
    )
