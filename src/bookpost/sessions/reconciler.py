"""Auto-end sessions whose device stopped heartbeating."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.config import get_settings
from bookpost.db.models import SESSION_ACTIVE, SESSION_ENDED, ReadingSession
from bookpost.db.transactions import lock_user, retry_transient
from bookpost.gamification.badge_service import announce_badges, award_earned_badges
from bookpost.sessions.service import END_ABANDONED, credit_elapsed, load_session

logger = logging.getLogger(__name__)


@retry_transient
async def abandon_session(
    db: AsyncSession,
    user_id: int,
    session_id: str,
    now: datetime | None = None,
    redis: object = None,
) -> int | None:
    """End one idle session crediting at most the heartbeat clamp.

    Badges earned by the final credit commit with the session end.

    Returns seconds credited, or None if the session was resumed or
    ended by its device in the meantime.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    settings = get_settings()
    user = await lock_user(db, user_id, now=now)
    session = await load_session(db, user_id, session_id)
    cutoff = now - timedelta(seconds=settings.max_idle_seconds)
    if session.state != SESSION_ACTIVE or session.last_heartbeat_at >= cutoff:
        await db.rollback()
        return None

    last = session.last_heartbeat_at
    credited = await credit_elapsed(db, user, session, now)
    session.last_heartbeat_at = last + timedelta(seconds=credited)
    session.state = SESSION_ENDED
    session.end_reason = END_ABANDONED
    session.ended_at = session.last_heartbeat_at
    session.is_paused = False
    badges = await award_earned_badges(db, user_id, now)
    await db.commit()
    logger.info("Abandoned session %s for user %d, credited %ds", session_id, user_id, credited)
    await announce_badges(redis, user_id, badges, now)
    return credited


async def reconcile_abandoned(
    db: AsyncSession,
    redis: object,
    now: datetime | None = None,
) -> int:
    """Sweep sessions idle beyond ``max_idle_seconds``. Returns number ended."""
    if now is None:
        now = datetime.now(timezone.utc)
    settings = get_settings()
    cutoff = now - timedelta(seconds=settings.max_idle_seconds)

    result = await db.execute(
        select(ReadingSession.id, ReadingSession.user_id)
        .where(
            ReadingSession.state == SESSION_ACTIVE,
            ReadingSession.last_heartbeat_at < cutoff,
        )
        .order_by(ReadingSession.last_heartbeat_at)
        .limit(settings.reconcile_batch_size)
    )
    stale = result.all()
    await db.rollback()

    ended = 0
    affected: set[int] = set()
    for session_id, user_id in stale:
        credited = await abandon_session(db, user_id, session_id, now=now, redis=redis)
        if credited is None:
            continue
        ended += 1
        affected.add(user_id)

    if ended:
        logger.info("Reconciled %d abandoned sessions for %d users", ended, len(affected))
    return ended
