"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from passkeyrp.config.logging import setup_logging
from passkeyrp.config.settings import Settings, get_settings
from passkeyrp.exceptions import PasskeyRPError, StorageError
from passkeyrp.storage.database import create_engine, init_db
from passkeyrp.storage.repositories.challenges import DatabaseChallengeStore
from passkeyrp.storage.repositories.credentials import DatabaseCredentialStore
from passkeyrp.storage.repositories.users import DatabaseUserRepository
from passkeyrp.web.auth.passkey_service import PasskeyService
from passkeyrp.web.auth.session import SessionIssuer
from passkeyrp.web.health import check_health
from passkeyrp.web.middleware import RequestIDMiddleware
from passkeyrp.web.routes.account import router as account_router
from passkeyrp.web.routes.auth import router as auth_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None, engine: AsyncEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Stores and services are built here and kept on ``app.state``; routes read
    them from the request instead of importing module-level singletons.
    """
    settings = settings or get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)
    engine = engine or create_engine(settings)
    challenges = DatabaseChallengeStore(engine, ttl_seconds=settings.challenge_ttl)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await init_db(engine)
        await challenges.purge_expired()
        logger.info("database_ready")
        yield
        await engine.dispose()

    app = FastAPI(
        title="passkeyrp",
        description="WebAuthn relying party",
        version="0.1.0",
        lifespan=lifespan,
    )

    user_repo = DatabaseUserRepository(engine)
    sessions = SessionIssuer(settings.secret_key, max_age=settings.session_max_age)
    app.state.settings = settings
    app.state.engine = engine
    app.state.user_repo = user_repo
    app.state.session_issuer = sessions
    app.state.passkey_service = PasskeyService(
        settings=settings,
        user_repo=user_repo,
        challenges=challenges,
        credentials=DatabaseCredentialStore(engine),
        sessions=sessions,
    )

    @app.exception_handler(PasskeyRPError)
    async def passkey_error_handler(request: Request, exc: PasskeyRPError) -> JSONResponse:
        if isinstance(exc, StorageError):
            logger.error("storage_error", path=request.url.path, error=str(exc.__cause__ or exc))
            detail = exc.detail
        else:
            detail = str(exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"verified": False, "error": exc.code, "detail": detail},
        )

    # Middleware (last added runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.origin],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.include_router(auth_router)
    app.include_router(account_router)

    @app.get("/api/health")
    async def health_check() -> dict[str, object]:
        return await check_health(engine, settings.rp_id)

    logger.info("app_created", rp_id=settings.rp_id, origin=settings.origin)
    return app
