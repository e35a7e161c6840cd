"""Consecutive reading-day streaks derived from daily aggregates."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.config import get_settings
from bookpost.db.models import DailyReadingStats, User, UserStreak
from bookpost.timeframes import local_date, resolve_timezone

logger = logging.getLogger(__name__)


async def get_or_create_streak(db: AsyncSession, user_id: int) -> UserStreak:
    """Get or create the cached streak row for a user."""
    result = await db.execute(select(UserStreak).where(UserStreak.user_id == user_id))
    streak = result.scalar_one_or_none()
    if streak is None:
        streak = UserStreak(
            user_id=user_id,
            current_streak_days=0,
            longest_streak_days=0,
        )
        db.add(streak)
        await db.flush()
    return streak


async def on_day_qualified(
    db: AsyncSession,
    user_id: int,
    day: date,
    now: datetime | None = None,
) -> UserStreak:
    """Advance the streak for a local day that just reached the minimum.

    Called inside the caller's per-user transaction; does not commit.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    streak = await get_or_create_streak(db, user_id)
    last = streak.last_qualifying_date

    if last is None:
        streak.current_streak_days = 1
        streak.streak_start_date = day
        streak.last_qualifying_date = day
    elif day == last:
        return streak
    elif day == last + timedelta(days=1):
        streak.current_streak_days += 1
        streak.last_qualifying_date = day
    elif day > last:
        logger.info("Streak reset for user %d after %d days (last %s)", user_id, streak.current_streak_days, last)
        streak.current_streak_days = 1
        streak.streak_start_date = day
        streak.last_qualifying_date = day
    else:
        # Late backfill: the day may bridge or extend an earlier gap.
        await recompute_streak(db, user_id, now=now)
        return streak

    streak.longest_streak_days = max(streak.longest_streak_days, streak.current_streak_days)
    streak.updated_at = now
    await db.flush()
    return streak


def _runs(days: list[date]) -> list[tuple[date, date]]:
    """Collapse sorted distinct days into (first, last) runs of consecutive days."""
    runs: list[tuple[date, date]] = []
    for day in days:
        if runs and day == runs[-1][1] + timedelta(days=1):
            runs[-1] = (runs[-1][0], day)
        else:
            runs.append((day, day))
    return runs


async def recompute_streak(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> UserStreak:
    """Rebuild the streak from the full history of qualifying days."""
    if now is None:
        now = datetime.now(timezone.utc)
    minimum = get_settings().streak_min_daily_seconds
    result = await db.execute(
        select(DailyReadingStats.day)
        .where(
            DailyReadingStats.user_id == user_id,
            DailyReadingStats.total_seconds >= minimum,
        )
        .order_by(DailyReadingStats.day)
    )
    days = list(result.scalars().all())
    streak = await get_or_create_streak(db, user_id)

    runs = _runs(days)
    if runs:
        start, end = runs[-1]
        streak.current_streak_days = (end - start).days + 1
        streak.streak_start_date = start
        streak.last_qualifying_date = end
        longest = max((last - first).days + 1 for first, last in runs)
    else:
        streak.current_streak_days = 0
        streak.streak_start_date = None
        streak.last_qualifying_date = None
        longest = 0

    streak.longest_streak_days = max(streak.longest_streak_days, longest)
    streak.updated_at = now
    await db.flush()
    logger.info(
        "Recomputed streak for user %d: current=%d longest=%d",
        user_id, streak.current_streak_days, streak.longest_streak_days,
    )
    return streak


def effective_streak(streak: UserStreak | None, today: date) -> int:
    """Current streak as the reader sees it on ``today``.

    A streak survives while today or yesterday qualified; once a full
    local day has passed without qualifying reading it reads as zero.
    """
    if streak is None or streak.last_qualifying_date is None:
        return 0
    if today - streak.last_qualifying_date > timedelta(days=1):
        return 0
    return streak.current_streak_days


async def get_streak_view(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> dict:
    """Stored and effective streak for the API layer."""
    if now is None:
        now = datetime.now(timezone.utc)
    settings = get_settings()
    tz_name = (await db.execute(select(User.timezone).where(User.id == user_id))).scalar_one_or_none()
    today = local_date(now, resolve_timezone(tz_name, settings.default_timezone))
    result = await db.execute(select(UserStreak).where(UserStreak.user_id == user_id))
    streak = result.scalar_one_or_none()
    return {
        "current_streak_days": effective_streak(streak, today),
        "stored_streak_days": streak.current_streak_days if streak else 0,
        "longest_streak_days": streak.longest_streak_days if streak else 0,
        "last_qualifying_date": streak.last_qualifying_date if streak else None,
        "streak_start_date": streak.streak_start_date if streak else None,
        "qualifying_minimum_seconds": settings.streak_min_daily_seconds,
        "today": today,
    }
