"""Duration aggregator: the only write path into the day/book/week counters.

Deltas arriving here are already deduplicated by the session tracker.
Every counter is an atomic ``INSERT ... ON CONFLICT DO UPDATE SET x = x + d``
so deltas from concurrent devices commute.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timezone

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.config import get_settings
from bookpost.db.models import (
    BookReadingTotal,
    DailyBookActivity,
    DailyReadingStats,
    User,
    WeeklyReadingTotal,
)
from bookpost.db.transactions import insert_for
from bookpost.timeframes import get_monday, local_date, resolve_timezone, split_seconds_by_day

logger = logging.getLogger(__name__)


def user_timezone(user: User):  # noqa: ANN201
    """Reporting timezone of a user (configured default when unknown)."""
    return resolve_timezone(user.timezone, get_settings().default_timezone)


def _later(column, candidate):  # noqa: ANN001, ANN202
    """SQL expression keeping the later of a stored instant and a new one."""
    return case(
        (column.is_(None), candidate),
        (column < candidate, candidate),
        else_=column,
    )


async def _add_to_day(
    db: AsyncSession,
    user_id: int,
    day: date,
    now: datetime,
    seconds: int = 0,
    pages: int = 0,
    finished: int = 0,
) -> int:
    """Increment one day's counters; returns the day's new total seconds."""
    stmt = insert_for(db, DailyReadingStats).values(
        user_id=user_id,
        day=day,
        total_seconds=seconds,
        pages_read=pages,
        finished_count=finished,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "day"],
        set_={
            "total_seconds": DailyReadingStats.total_seconds + stmt.excluded.total_seconds,
            "pages_read": DailyReadingStats.pages_read + stmt.excluded.pages_read,
            "finished_count": DailyReadingStats.finished_count + stmt.excluded.finished_count,
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(DailyReadingStats.total_seconds)
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def _add_to_book_day(
    db: AsyncSession, user_id: int, day: date, book_id: str, book_type: str, seconds: int
) -> None:
    stmt = insert_for(db, DailyBookActivity).values(
        user_id=user_id, day=day, book_id=book_id, book_type=book_type, seconds=seconds,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "day", "book_id", "book_type"],
        set_={"seconds": DailyBookActivity.seconds + stmt.excluded.seconds},
    )
    await db.execute(stmt)


async def _add_to_book(
    db: AsyncSession,
    user_id: int,
    book_id: str,
    book_type: str,
    seconds: int,
    pages: int,
    started_at: datetime,
    ended_at: datetime,
    position: str | None,
) -> None:
    stmt = insert_for(db, BookReadingTotal).values(
        user_id=user_id,
        book_id=book_id,
        book_type=book_type,
        total_seconds=seconds,
        pages_read=pages,
        last_position=position,
        first_read_at=started_at,
        last_read_at=ended_at,
    )
    set_ = {
        "total_seconds": BookReadingTotal.total_seconds + stmt.excluded.total_seconds,
        "pages_read": BookReadingTotal.pages_read + stmt.excluded.pages_read,
        "last_read_at": _later(BookReadingTotal.last_read_at, stmt.excluded.last_read_at),
    }
    if position is not None:
        set_["last_position"] = stmt.excluded.last_position
    stmt = stmt.on_conflict_do_update(index_elements=["user_id", "book_id", "book_type"], set_=set_)
    await db.execute(stmt)


async def _add_to_week(
    db: AsyncSession, user_id: int, week_start: date, seconds: int, occurred_at: datetime
) -> None:
    stmt = insert_for(db, WeeklyReadingTotal).values(
        week_start=week_start, user_id=user_id, total_seconds=seconds, last_occurred_at=occurred_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["week_start", "user_id"],
        set_={
            "total_seconds": WeeklyReadingTotal.total_seconds + stmt.excluded.total_seconds,
            "last_occurred_at": _later(WeeklyReadingTotal.last_occurred_at, stmt.excluded.last_occurred_at),
        },
    )
    await db.execute(stmt)


async def apply_delta(
    db: AsyncSession,
    user: User,
    book_id: str,
    book_type: str,
    started_at: datetime,
    ended_at: datetime,
    seconds: int,
    *,
    pages_read: int = 0,
    position: str | None = None,
    now: datetime | None = None,
) -> list[date]:
    """Fold ``seconds`` read over ``[started_at, ended_at)`` into the counters.

    A delta spanning local midnight is split across both days in proportion
    to wall-clock overlap; the same split against the leaderboard timezone
    assigns seconds to settlement windows by when they occurred.

    Returns the local days whose total first reached the streak minimum
    as a result of this delta.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if seconds < 0:
        msg = f"negative delta {seconds}s"
        raise ValueError(msg)

    settings = get_settings()
    tz = user_timezone(user)
    minimum = settings.streak_min_daily_seconds
    newly_qualifying: list[date] = []

    for day, share in split_seconds_by_day(started_at, ended_at, seconds, tz):
        total = await _add_to_day(db, user.id, day, now, seconds=share)
        if total >= minimum > total - share:
            newly_qualifying.append(day)
        await _add_to_book_day(db, user.id, day, book_id, book_type, share)

    if pages_read > 0:
        await _add_to_day(db, user.id, local_date(ended_at, tz), now, pages=pages_read)

    if seconds > 0 or pages_read > 0 or position is not None:
        await _add_to_book(
            db, user.id, book_id, book_type, seconds, pages_read, started_at, ended_at, position,
        )

    if seconds > 0:
        lb_tz = resolve_timezone(settings.leaderboard_timezone)
        weekly: dict[date, int] = defaultdict(int)
        for day, share in split_seconds_by_day(started_at, ended_at, seconds, lb_tz):
            weekly[get_monday(day)] += share
        for week_start, share in sorted(weekly.items()):
            await _add_to_week(db, user.id, week_start, share, ended_at)

    await db.flush()
    return newly_qualifying


async def mark_book_finished(
    db: AsyncSession,
    user: User,
    book_id: str,
    book_type: str,
    finished_at: datetime,
) -> bool:
    """Record the first finish of a book. Returns False if already finished."""
    result = await db.execute(
        select(BookReadingTotal).where(
            BookReadingTotal.user_id == user.id,
            BookReadingTotal.book_id == book_id,
            BookReadingTotal.book_type == book_type,
        )
    )
    row = result.scalar_one_or_none()
    if row is not None and row.finished_at is not None:
        return False
    if row is None:
        row = BookReadingTotal(
            user_id=user.id,
            book_id=book_id,
            book_type=book_type,
            first_read_at=finished_at,
            last_read_at=finished_at,
        )
        db.add(row)
    row.finished_at = finished_at
    await _add_to_day(db, user.id, local_date(finished_at, user_timezone(user)), finished_at, finished=1)
    await db.flush()
    logger.info("User %d finished %s:%s", user.id, book_type, book_id)
    return True


async def get_day_seconds(db: AsyncSession, user_id: int, day: date) -> int:
    """Total seconds read by a user on a local day."""
    result = await db.execute(
        select(DailyReadingStats.total_seconds).where(
            DailyReadingStats.user_id == user_id,
            DailyReadingStats.day == day,
        )
    )
    return int(result.scalar_one_or_none() or 0)


async def get_book_seconds(db: AsyncSession, user_id: int, book_id: str, book_type: str) -> int:
    """Lifetime seconds read by a user in one book."""
    result = await db.execute(
        select(BookReadingTotal.total_seconds).where(
            BookReadingTotal.user_id == user_id,
            BookReadingTotal.book_id == book_id,
            BookReadingTotal.book_type == book_type,
        )
    )
    return int(result.scalar_one_or_none() or 0)
