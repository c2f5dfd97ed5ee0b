"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from tapboard.config import get_settings
from tapboard.database import close_db, init_db
from tapboard.health.router import router as health_router
from tapboard.leaderboard.router import router as leaderboard_router
from tapboard.middleware import setup_middleware

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    # Fail fast on missing secrets instead of on the first request.
    settings.require_secrets()
    await init_db(settings.database_url)
    logger.info(
        "startup_complete",
        environment=settings.environment,
        init_data_strict=settings.init_data_strict,
    )

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Tapboard API",
        description="Telegram WebApp score submission and leaderboard",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(leaderboard_router)

    return app


app = create_app()
