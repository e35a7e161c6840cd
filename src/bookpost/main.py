"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from bookpost.competition.router import router as leaderboard_router
from bookpost.config import get_settings
from bookpost.database import close_db, get_session, init_db
from bookpost.gamification.router import router as badges_router
from bookpost.gamification.seed import seed_badges
from bookpost.goals.router import router as goals_router
from bookpost.health.router import router as health_router
from bookpost.middleware import setup_middleware
from bookpost.redis_client import close_redis, init_redis
from bookpost.sessions.router import router as sessions_router
from bookpost.stats.router import router as stats_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Seed badge definitions (idempotent)
    try:
        async for db in get_session():
            await seed_badges(db)
            break
    except SQLAlchemyError:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="BookPost Reading Engine",
        description="Reading sessions, daily aggregates, streaks, badges and weekly leaderboards",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(sessions_router)
    app.include_router(stats_router)
    app.include_router(badges_router)
    app.include_router(goals_router)
    app.include_router(leaderboard_router)

    return app


app = create_app()
