"""Read-side composition of reading statistics.

Each dimension is a deterministic fold over daily aggregate rows for the
requested window plus the cached streak and earned badges. Nothing here writes.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.competition.leaderboard_service import get_user_rank
from bookpost.config import get_settings
from bookpost.db.models import BookReadingTotal, DailyBookActivity, DailyReadingStats, User, UserStreak
from bookpost.errors import InvalidDimensionError, InvalidInputError
from bookpost.gamification.badge_service import get_earned_badges
from bookpost.gamification.streak_service import effective_streak
from bookpost.timeframes import (
    current_week_start,
    day_start,
    format_duration,
    get_monday,
    local_date,
    month_range,
    resolve_timezone,
)

DIMENSIONS = ("week", "month", "year", "total", "calendar")
DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


async def _user_tz(db: AsyncSession, user_id: int) -> ZoneInfo:
    result = await db.execute(select(User.timezone).where(User.id == user_id))
    return resolve_timezone(result.scalar_one_or_none(), get_settings().default_timezone)


async def _today(db: AsyncSession, user_id: int, now: datetime) -> date:
    return local_date(now, await _user_tz(db, user_id))


async def _daily_rows(db: AsyncSession, user_id: int, start: date, end: date) -> dict[date, DailyReadingStats]:
    result = await db.execute(
        select(DailyReadingStats)
        .where(
            DailyReadingStats.user_id == user_id,
            DailyReadingStats.day >= start,
            DailyReadingStats.day <= end,
        )
        .order_by(DailyReadingStats.day)
    )
    return {row.day: row for row in result.scalars()}


async def _range_total(db: AsyncSession, user_id: int, start: date, end: date) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(DailyReadingStats.total_seconds), 0)).where(
            DailyReadingStats.user_id == user_id,
            DailyReadingStats.day >= start,
            DailyReadingStats.day <= end,
        )
    )
    return int(result.scalar_one())


async def _books_read(db: AsyncSession, user_id: int, start: date, end: date) -> int:
    result = await db.execute(
        select(func.count(func.distinct(DailyBookActivity.book_type + ":" + DailyBookActivity.book_id))).where(
            DailyBookActivity.user_id == user_id,
            DailyBookActivity.day >= start,
            DailyBookActivity.day <= end,
            DailyBookActivity.seconds > 0,
        )
    )
    return int(result.scalar_one() or 0)


def _change_percent(current: int, previous: int) -> float:
    """Change versus the previous period, rounded to one decimal; 0 with no baseline."""
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)


def _day_entry(day: date, row: DailyReadingStats | None) -> dict:
    seconds = row.total_seconds if row else 0
    return {
        "date": day.isoformat(),
        "day_of_week": DAY_NAMES[day.weekday()],
        "duration_seconds": seconds,
        "pages_read": row.pages_read if row else 0,
        "finished_count": row.finished_count if row else 0,
    }


def _fill(start: date, end: date, rows: dict[date, DailyReadingStats]) -> list[dict]:
    days = []
    day = start
    while day <= end:
        days.append(_day_entry(day, rows.get(day)))
        day += timedelta(days=1)
    return days


def _leaderboard_week(start: date, today: date, now: datetime) -> date:
    """Leaderboard window matching a local week.

    Windows are keyed on the reference-timezone Monday, which can differ
    from the reader's local Monday around midnight; the current local week
    maps to the window open at ``now``.
    """
    if start <= today < start + timedelta(days=7):
        return current_week_start(now, resolve_timezone(get_settings().leaderboard_timezone))
    return start


async def _week_stats(db: AsyncSession, user_id: int, anchor: date, today: date, now: datetime) -> dict:
    start = get_monday(anchor)
    end = start + timedelta(days=6)
    window = _leaderboard_week(start, today, now)
    rows = await _daily_rows(db, user_id, start, end)
    total = sum(r.total_seconds for r in rows.values())
    previous = await _range_total(db, user_id, start - timedelta(days=7), start - timedelta(days=1))
    return {
        "dimension": "week",
        "date_range": {"start": start.isoformat(), "end": end.isoformat()},
        "summary": {
            "total_duration_seconds": total,
            "daily_average_seconds": total // 7,
            "comparison_change": _change_percent(total, previous),
            "friend_ranking": await get_user_rank(db, user_id, window, scope="friends"),
        },
        "reading_records": {
            "books_read": await _books_read(db, user_id, start, end),
            "reading_days": sum(1 for r in rows.values() if r.total_seconds > 0),
            "pages_read": sum(r.pages_read for r in rows.values()),
            "books_finished": sum(r.finished_count for r in rows.values()),
        },
        "duration_by_day": _fill(start, end, rows),
    }


def _previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


async def _month_stats(db: AsyncSession, user_id: int, year: int, month: int) -> dict:
    start, end = month_range(year, month)
    rows = await _daily_rows(db, user_id, start, end)
    total = sum(r.total_seconds for r in rows.values())
    prev_year, prev_month = _previous_month(year, month)
    previous = 0
    if prev_year >= 1970:
        prev_start, prev_end = month_range(prev_year, prev_month)
        previous = await _range_total(db, user_id, prev_start, prev_end)
    return {
        "dimension": "month",
        "year": year,
        "month": month,
        "date_range": {"start": start.isoformat(), "end": end.isoformat()},
        "summary": {
            "total_duration_seconds": total,
            "daily_average_seconds": total // end.day,
            "comparison_change": _change_percent(total, previous),
            "reading_days": sum(1 for r in rows.values() if r.total_seconds > 0),
            "books_read": await _books_read(db, user_id, start, end),
        },
        "duration_by_day": _fill(start, end, rows),
    }


async def _year_stats(db: AsyncSession, user_id: int, year: int) -> dict:
    if not 1970 <= year <= 9998:
        raise InvalidInputError(f"Invalid year: {year}")
    rows = await _daily_rows(db, user_id, date(year, 1, 1), date(year, 12, 31))
    months = [{"month": m, "duration_seconds": 0, "reading_days": 0} for m in range(1, 13)]
    for row in rows.values():
        bucket = months[row.day.month - 1]
        bucket["duration_seconds"] += row.total_seconds
        if row.total_seconds > 0:
            bucket["reading_days"] += 1
    total = sum(m["duration_seconds"] for m in months)
    return {
        "dimension": "year",
        "year": year,
        "summary": {
            "total_duration_seconds": total,
            "monthly_average_seconds": total // 12,
            "total_reading_days": sum(m["reading_days"] for m in months),
            "books_read": await _books_read(db, user_id, date(year, 1, 1), date(year, 12, 31)),
        },
        "duration_by_month": months,
    }


async def _total_stats(db: AsyncSession, user_id: int, today: date) -> dict:
    day_totals = (
        await db.execute(
            select(
                func.coalesce(func.sum(DailyReadingStats.total_seconds), 0),
                func.count().filter(DailyReadingStats.total_seconds > 0),
            ).where(DailyReadingStats.user_id == user_id)
        )
    ).one()
    book_totals = (
        await db.execute(
            select(
                func.count().filter(BookReadingTotal.total_seconds > 0),
                func.count().filter(BookReadingTotal.finished_at.is_not(None)),
            ).where(BookReadingTotal.user_id == user_id)
        )
    ).one()
    streak = (
        await db.execute(select(UserStreak).where(UserStreak.user_id == user_id))
    ).scalar_one_or_none()
    return {
        "dimension": "total",
        "summary": {
            "total_duration_seconds": int(day_totals[0] or 0),
            "total_days": int(day_totals[1] or 0),
            "current_streak_days": effective_streak(streak, today),
            "longest_streak_days": streak.longest_streak_days if streak else 0,
            "books_read": int(book_totals[0] or 0),
            "books_finished": int(book_totals[1] or 0),
        },
    }


async def _calendar_stats(db: AsyncSession, user_id: int, year: int, month: int) -> dict:
    start, end = month_range(year, month)
    tz = await _user_tz(db, user_id)
    rows = await _daily_rows(db, user_id, start, end)
    days = []
    for entry in _fill(start, end, rows):
        entry["has_reading"] = entry["duration_seconds"] > 0
        days.append(entry)
    milestones = await get_earned_badges(
        db, user_id, since=day_start(start, tz), until=day_start(end + timedelta(days=1), tz)
    )
    return {
        "dimension": "calendar",
        "year": year,
        "month": month,
        "first_weekday": calendar.monthrange(year, month)[0],
        "calendar_days": days,
        "milestones": milestones,
    }


async def get_stats(
    db: AsyncSession,
    user_id: int,
    dimension: str,
    day: date | None = None,
    year: int | None = None,
    month: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Statistics for one dimension: week, month, year, total or calendar.

    ``day`` anchors the week view; ``year``/``month`` select the month,
    year and calendar views. Missing anchors default to the user's today.
    """
    if dimension not in DIMENSIONS:
        raise InvalidDimensionError(f"Unknown stats dimension: {dimension!r}")
    if now is None:
        now = datetime.now(timezone.utc)
    today = await _today(db, user_id, now)

    if dimension == "week":
        return await _week_stats(db, user_id, day or today, today, now)
    if dimension == "total":
        return await _total_stats(db, user_id, today)
    year = year or (day or today).year
    if dimension == "year":
        return await _year_stats(db, user_id, year)
    month = month or (day or today).month
    if dimension == "month":
        return await _month_stats(db, user_id, year, month)
    return await _calendar_stats(db, user_id, year, month)


async def get_today(db: AsyncSession, user_id: int, now: datetime | None = None) -> dict:
    """Seconds read on the user's current local day, plus a display string."""
    if now is None:
        now = datetime.now(timezone.utc)
    today = await _today(db, user_id, now)
    seconds = await _range_total(db, user_id, today, today)
    return {"date": today.isoformat(), "duration_seconds": seconds, "formatted": format_duration(seconds)}


async def get_milestones(
    db: AsyncSession,
    user_id: int,
    limit: int = 20,
    year: int | None = None,
) -> list[dict]:
    """Achieved milestones (earned badges), newest first, optionally within a local calendar year."""
    if year is None:
        return await get_earned_badges(db, user_id, limit=limit)
    if not 1970 <= year <= 9998:
        raise InvalidInputError(f"Invalid year: {year}")
    tz = await _user_tz(db, user_id)
    return await get_earned_badges(
        db, user_id, limit=limit, since=day_start(date(year, 1, 1), tz), until=day_start(date(year + 1, 1, 1), tz)
    )
