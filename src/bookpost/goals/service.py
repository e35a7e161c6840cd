"""Daily reading goal: a target in minutes checked against today's reading."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.config import get_settings
from bookpost.db.models import ReadingGoal, User, UserStreak
from bookpost.db.transactions import insert_for, lock_user, retry_transient
from bookpost.errors import InvalidInputError
from bookpost.gamification.streak_service import effective_streak
from bookpost.stats.aggregator import get_day_seconds
from bookpost.timeframes import local_date, resolve_timezone

logger = logging.getLogger(__name__)

MIN_TARGET_MINUTES = 5
MAX_TARGET_MINUTES = 480


def goal_progress(current_minutes: int, target_minutes: int) -> dict:
    """Progress toward a target, as a whole percentage capped at 100."""
    return {
        "target_minutes": target_minutes,
        "current_minutes": current_minutes,
        "progress": min(100, current_minutes * 100 // target_minutes),
        "is_completed": current_minutes >= target_minutes,
    }


async def get_daily_goal(db: AsyncSession, user_id: int, now: datetime | None = None) -> dict:
    """Today's goal progress plus the current and longest streak.

    Readers without a saved goal are measured against the default target
    and reported with ``has_goal`` false. Read-only.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    settings = get_settings()
    tz_name = (await db.execute(select(User.timezone).where(User.id == user_id))).scalar_one_or_none()
    today = local_date(now, resolve_timezone(tz_name, settings.default_timezone))

    goal = (
        await db.execute(select(ReadingGoal).where(ReadingGoal.user_id == user_id))
    ).scalar_one_or_none()
    streak = (
        await db.execute(select(UserStreak).where(UserStreak.user_id == user_id))
    ).scalar_one_or_none()

    target = goal.daily_target_minutes if goal else settings.default_daily_goal_minutes
    current_minutes = await get_day_seconds(db, user_id, today) // 60
    return {
        "has_goal": goal is not None,
        "date": today.isoformat(),
        "goal": goal_progress(current_minutes, target),
        "streak": {
            "current": effective_streak(streak, today),
            "max": streak.longest_streak_days if streak else 0,
        },
    }


@retry_transient
async def set_daily_goal(
    db: AsyncSession,
    user_id: int,
    target_minutes: int,
    now: datetime | None = None,
) -> dict:
    """Create or replace the user's daily target."""
    if not MIN_TARGET_MINUTES <= target_minutes <= MAX_TARGET_MINUTES:
        raise InvalidInputError(
            f"Daily goal must be between {MIN_TARGET_MINUTES} and {MAX_TARGET_MINUTES} minutes"
        )
    if now is None:
        now = datetime.now(timezone.utc)

    await lock_user(db, user_id, now=now)
    stmt = insert_for(db, ReadingGoal).values(
        user_id=user_id, daily_target_minutes=target_minutes, created_at=now, updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={
            "daily_target_minutes": stmt.excluded.daily_target_minutes,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)
    await db.commit()
    logger.info("Daily goal for user %d set to %d minutes", user_id, target_minutes)
    return {"target_minutes": target_minutes, "message": f"Daily goal set to {target_minutes} minutes"}
