"""Weekly reading leaderboard: live ranking, settlement snapshots, likes.

Open windows are ranked on read from ``weekly_reading_totals``. Once a
window closes (plus a grace period for in-flight writes) it is settled:
its ranking is written to ``leaderboard_snapshots`` and served from there
unchanged forever after. Likes live in their own table and never touch rank.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.competition.ranking import rank_change, rank_entries
from bookpost.config import get_settings
from bookpost.db.models import (
    DailyReadingStats,
    LeaderboardLike,
    LeaderboardSettlement,
    LeaderboardSnapshot,
    User,
    UserFollowing,
    WeeklyReadingTotal,
)
from bookpost.db.transactions import insert_for, lock_user
from bookpost.errors import AlreadyLikedError, InvalidInputError, NotFoundError
from bookpost.timeframes import current_week_start, get_week_iso, resolve_timezone, week_window

logger = logging.getLogger(__name__)

SCOPES = ("all", "friends")


def _reference_tz():  # noqa: ANN202
    return resolve_timezone(get_settings().leaderboard_timezone)


async def get_settlement(db: AsyncSession, week_start: date) -> LeaderboardSettlement | None:
    result = await db.execute(
        select(LeaderboardSettlement).where(LeaderboardSettlement.week_start == week_start)
    )
    return result.scalar_one_or_none()


async def get_friend_ids(db: AsyncSession, user_id: int) -> set[int]:
    """The caller plus everyone they follow."""
    result = await db.execute(
        select(UserFollowing.following_id).where(UserFollowing.follower_id == user_id)
    )
    return {user_id, *result.scalars().all()}


async def _reading_days(db: AsyncSession, week_start: date, user_ids: list[int]) -> dict[int, int]:
    if not user_ids:
        return {}
    result = await db.execute(
        select(DailyReadingStats.user_id, func.count().label("days"))
        .where(
            DailyReadingStats.user_id.in_(user_ids),
            DailyReadingStats.day >= week_start,
            DailyReadingStats.day < week_start + timedelta(days=7),
            DailyReadingStats.total_seconds > 0,
        )
        .group_by(DailyReadingStats.user_id)
    )
    return {row.user_id: row.days for row in result}


async def _previous_ranks(
    db: AsyncSession,
    week_start: date,
    user_ids: set[int] | None = None,
) -> dict[int, int]:
    """Ranks from the prior window's snapshot, re-ranked within ``user_ids`` if given."""
    result = await db.execute(
        select(LeaderboardSnapshot.user_id)
        .where(LeaderboardSnapshot.week_start == week_start - timedelta(days=7))
        .order_by(LeaderboardSnapshot.rank)
    )
    ordered = [uid for uid in result.scalars().all() if user_ids is None or uid in user_ids]
    return {uid: idx + 1 for idx, uid in enumerate(ordered)}


async def _live_entries(
    db: AsyncSession,
    week_start: date,
    user_ids: set[int] | None = None,
) -> list[dict]:
    query = (
        select(
            WeeklyReadingTotal.user_id,
            WeeklyReadingTotal.total_seconds,
            User.created_at,
            User.display_name,
            User.avatar_url,
        )
        .join(User, User.id == WeeklyReadingTotal.user_id)
        .where(
            WeeklyReadingTotal.week_start == week_start,
            WeeklyReadingTotal.total_seconds > 0,
        )
    )
    if user_ids is not None:
        query = query.where(WeeklyReadingTotal.user_id.in_(user_ids))
    result = await db.execute(query)
    entries = [
        {
            "user_id": row.user_id,
            "duration_seconds": row.total_seconds,
            "created_at": row.created_at,
            "display_name": row.display_name,
            "avatar_url": row.avatar_url,
        }
        for row in result
    ]
    ranked = rank_entries(entries)
    days = await _reading_days(db, week_start, [e["user_id"] for e in ranked])
    previous = await _previous_ranks(db, week_start, user_ids)
    for entry in ranked:
        entry["reading_days"] = days.get(entry["user_id"], 0)
        entry["previous_rank"] = previous.get(entry["user_id"])
    return ranked


async def _snapshot_entries(
    db: AsyncSession,
    week_start: date,
    user_ids: set[int] | None = None,
) -> list[dict]:
    query = (
        select(LeaderboardSnapshot, User.display_name, User.avatar_url)
        .join(User, User.id == LeaderboardSnapshot.user_id)
        .where(LeaderboardSnapshot.week_start == week_start)
        .order_by(LeaderboardSnapshot.rank)
    )
    if user_ids is not None:
        query = query.where(LeaderboardSnapshot.user_id.in_(user_ids))
    result = await db.execute(query)
    entries = [
        {
            "user_id": snap.user_id,
            "rank": snap.rank,
            "duration_seconds": snap.duration_seconds,
            "reading_days": snap.reading_days,
            "previous_rank": snap.previous_rank,
            "display_name": display_name,
            "avatar_url": avatar_url,
        }
        for snap, display_name, avatar_url in result
    ]
    if user_ids is not None:
        previous = await _previous_ranks(db, week_start, user_ids)
        for idx, entry in enumerate(entries):
            entry["rank"] = idx + 1
            entry["previous_rank"] = previous.get(entry["user_id"])
    return entries


async def _likes(
    db: AsyncSession,
    week_start: date,
    viewer_id: int,
    user_ids: list[int],
) -> tuple[dict[int, int], set[int]]:
    if not user_ids:
        return {}, set()
    counts_result = await db.execute(
        select(LeaderboardLike.target_user_id, func.count().label("cnt"))
        .where(
            LeaderboardLike.week_start == week_start,
            LeaderboardLike.target_user_id.in_(user_ids),
        )
        .group_by(LeaderboardLike.target_user_id)
    )
    counts = {row.target_user_id: row.cnt for row in counts_result}
    liked_result = await db.execute(
        select(LeaderboardLike.target_user_id).where(
            LeaderboardLike.week_start == week_start,
            LeaderboardLike.user_id == viewer_id,
        )
    )
    return counts, set(liked_result.scalars().all())


def _present(entry: dict, viewer_id: int, likes: dict[int, int], liked: set[int]) -> dict:
    previous_rank = entry.get("previous_rank")
    return {
        "rank": entry["rank"],
        "user_id": entry["user_id"],
        "display_name": entry.get("display_name") or f"Reader-{entry['user_id']}",
        "avatar_url": entry.get("avatar_url"),
        "duration_seconds": entry["duration_seconds"],
        "reading_days": entry.get("reading_days", 0),
        "previous_rank": previous_rank,
        "rank_change": rank_change(entry["rank"], previous_rank),
        "is_new": previous_rank is None,
        "likes_count": likes.get(entry["user_id"], 0),
        "is_liked": entry["user_id"] in liked,
        "is_current_user": entry["user_id"] == viewer_id,
    }


async def get_leaderboard(
    db: AsyncSession,
    user_id: int,
    scope: str = "all",
    week_start: date | None = None,
    now: datetime | None = None,
    limit: int | None = None,
) -> dict:
    """Ranked entries for a weekly window plus the caller's own ranking.

    Settled windows are served from their snapshot; open ones are ranked live.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if scope not in SCOPES:
        raise InvalidInputError(f"Unknown leaderboard scope: {scope!r}")
    settings = get_settings()
    if limit is None:
        limit = settings.leaderboard_page_size
    tz = _reference_tz()
    if week_start is None:
        week_start = current_week_start(now, tz)

    user_ids = await get_friend_ids(db, user_id) if scope == "friends" else None
    settlement = await get_settlement(db, week_start)
    if settlement is not None:
        ranked = await _snapshot_entries(db, week_start, user_ids)
    else:
        ranked = await _live_entries(db, week_start, user_ids)

    shown = ranked[:limit]
    mine = next((e for e in ranked if e["user_id"] == user_id), None)
    like_targets = [e["user_id"] for e in shown]
    if mine is not None and mine not in shown:
        like_targets.append(user_id)
    likes, liked = await _likes(db, week_start, user_id, like_targets)

    window_start, window_end = week_window(week_start, tz)
    return {
        "week_start": week_start,
        "week_end": week_start + timedelta(days=6),
        "week_iso": get_week_iso(week_start),
        "window_start": window_start,
        "window_end": window_end,
        "scope": scope,
        "settled": settlement is not None,
        "settled_at": settlement.settled_at if settlement else None,
        "entries": [_present(e, user_id, likes, liked) for e in shown],
        "my_ranking": _present(mine, user_id, likes, liked) if mine else None,
        "total_participants": len(ranked),
    }


async def get_user_rank(
    db: AsyncSession,
    user_id: int,
    week_start: date,
    scope: str = "all",
) -> int | None:
    """The user's rank in a window, or None if they have no entry."""
    user_ids = await get_friend_ids(db, user_id) if scope == "friends" else None
    if await get_settlement(db, week_start) is not None:
        ranked = await _snapshot_entries(db, week_start, user_ids)
    else:
        ranked = await _live_entries(db, week_start, user_ids)
    return next((e["rank"] for e in ranked if e["user_id"] == user_id), None)


async def settle_window(db: AsyncSession, week_start: date, now: datetime | None = None) -> int:
    """Freeze one closed window into its snapshot. Returns participants, 0 if already settled."""
    if now is None:
        now = datetime.now(timezone.utc)
    _, window_end = week_window(week_start, _reference_tz())

    stmt = insert_for(db, LeaderboardSettlement).values(
        week_start=week_start, window_end=window_end, settled_at=now, participant_count=0,
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["week_start"]).returning(
        LeaderboardSettlement.week_start
    )
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        await db.rollback()
        return 0

    ranked = await _live_entries(db, week_start)
    for entry in ranked:
        db.add(LeaderboardSnapshot(
            week_start=week_start,
            user_id=entry["user_id"],
            rank=entry["rank"],
            duration_seconds=entry["duration_seconds"],
            reading_days=entry["reading_days"],
            previous_rank=entry["previous_rank"],
        ))
    settlement = await get_settlement(db, week_start)
    settlement.participant_count = len(ranked)  # type: ignore[union-attr]
    await db.commit()
    logger.info("Settled leaderboard %s: %d participants", get_week_iso(week_start), len(ranked))
    return len(ranked)


async def settle_due_windows(db: AsyncSession, now: datetime | None = None) -> list[date]:
    """Settle every closed, unsettled window, oldest first.

    A window is due once its end plus the settlement grace has passed.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    grace = timedelta(seconds=get_settings().leaderboard_settlement_grace_seconds)
    tz = _reference_tz()
    open_week = current_week_start(now, tz)

    settled_weeks = select(LeaderboardSettlement.week_start)
    result = await db.execute(
        select(WeeklyReadingTotal.week_start)
        .where(
            WeeklyReadingTotal.week_start < open_week,
            WeeklyReadingTotal.week_start.not_in(settled_weeks),
        )
        .distinct()
        .order_by(WeeklyReadingTotal.week_start)
    )
    settled: list[date] = []
    for week_start in result.scalars().all():
        _, window_end = week_window(week_start, tz)
        if window_end + grace > now:
            break
        await settle_window(db, week_start, now=now)
        settled.append(week_start)
    return settled


async def like_entry(
    db: AsyncSession,
    user_id: int,
    target_user_id: int,
    week_start: date | None = None,
    now: datetime | None = None,
) -> dict:
    """Like another reader's entry. At most one like per pair per week."""
    if now is None:
        now = datetime.now(timezone.utc)
    if week_start is None:
        week_start = current_week_start(now, _reference_tz())

    await lock_user(db, user_id, now=now)
    has_entry = await db.execute(
        select(WeeklyReadingTotal.user_id).where(
            WeeklyReadingTotal.week_start == week_start,
            WeeklyReadingTotal.user_id == target_user_id,
            WeeklyReadingTotal.total_seconds > 0,
        )
    )
    if has_entry.scalar_one_or_none() is None:
        await db.rollback()
        raise NotFoundError(f"No leaderboard entry for user {target_user_id} in week {week_start.isoformat()}")

    stmt = insert_for(db, LeaderboardLike).values(
        user_id=user_id, target_user_id=target_user_id, week_start=week_start, created_at=now,
    )
    stmt = stmt.on_conflict_do_nothing(
        index_elements=["user_id", "target_user_id", "week_start"]
    ).returning(LeaderboardLike.id)
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        await db.rollback()
        raise AlreadyLikedError()

    count = await db.execute(
        select(func.count()).select_from(LeaderboardLike).where(
            LeaderboardLike.target_user_id == target_user_id,
            LeaderboardLike.week_start == week_start,
        )
    )
    likes_count = int(count.scalar_one())
    await db.commit()
    return {"success": True, "likes_count": likes_count}
