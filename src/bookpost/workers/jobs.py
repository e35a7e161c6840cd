"""Periodic engine jobs run by the arq worker.

Both jobs are idempotent, so overlapping or repeated runs are harmless.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.competition.leaderboard_service import settle_due_windows
from bookpost.config import get_settings
from bookpost.database import close_db, get_session, init_db
from bookpost.sessions.reconciler import reconcile_abandoned

logger = logging.getLogger(__name__)


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["publisher"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Reading engine worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    publisher: aioredis.Redis | None = ctx.get("publisher")
    if publisher:
        await publisher.aclose()
    await close_db()
    logger.info("Reading engine worker shut down")


async def reconcile_abandoned_sessions(ctx: dict) -> int:  # type: ignore[type-arg]
    """Every minute: auto-end sessions whose device went silent."""
    db = await _get_db_session()
    try:
        ended = await reconcile_abandoned(db, ctx.get("publisher"), now=datetime.now(timezone.utc))
    except Exception:
        logger.exception("Failed to reconcile abandoned sessions")
        raise
    finally:
        await db.close()
    return ended


async def settle_leaderboards(ctx: dict) -> list[str]:  # type: ignore[type-arg]
    """Every minute: settle leaderboard windows that have closed."""
    db = await _get_db_session()
    try:
        settled = await settle_due_windows(db, now=datetime.now(timezone.utc))
    except Exception:
        logger.exception("Failed to settle leaderboard windows")
        raise
    finally:
        await db.close()
    if settled:
        logger.info("Settled leaderboard windows: %s", ", ".join(w.isoformat() for w in settled))
    return [w.isoformat() for w in settled]
