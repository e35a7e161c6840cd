"""Badge engine: threshold evaluation, awards, and progress."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from itertools import groupby

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.db.models import BadgeDefinition, BookReadingTotal, DailyReadingStats, UserBadge, UserStreak
from bookpost.db.transactions import insert_for, lock_user, retry_transient
from bookpost.errors import BadgeNotFoundError
from bookpost.gamification.catalog import HOUR

logger = logging.getLogger(__name__)

_DAY_METRICS = frozenset({"streak_days", "max_streak_days", "total_days"})
_BOOK_METRICS = frozenset({"books_finished", "books_read"})


async def compute_metrics(db: AsyncSession, user_id: int) -> dict[str, int]:
    """Current value of every badge metric for a user."""
    streak = (
        await db.execute(select(UserStreak).where(UserStreak.user_id == user_id))
    ).scalar_one_or_none()

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
                func.count().filter(BookReadingTotal.finished_at.is_not(None)),
                func.count().filter(BookReadingTotal.total_seconds > 0),
            ).where(BookReadingTotal.user_id == user_id)
        )
    ).one()

    return {
        "streak_days": streak.current_streak_days if streak else 0,
        "max_streak_days": streak.longest_streak_days if streak else 0,
        "total_duration": int(day_totals[0] or 0),
        "total_days": int(day_totals[1] or 0),
        "books_finished": int(book_totals[0] or 0),
        "books_read": int(book_totals[1] or 0),
    }


def _format_remaining(metric: str, remaining: int) -> str:
    if remaining <= 0:
        return "Achieved"
    plural = "" if remaining == 1 else "s"
    if metric in _DAY_METRICS:
        return f"{remaining} more day{plural} to earn"
    if metric == "total_duration":
        return f"{remaining} more hour{plural} to earn"
    if metric in _BOOK_METRICS:
        return f"{remaining} more book{plural} to earn"
    return f"{remaining} more to earn"


def calculate_progress(badge: BadgeDefinition, metrics: dict[str, int]) -> dict:
    """Progress toward a badge. Durations are reported in whole hours."""
    current = metrics.get(badge.metric, 0)
    target = badge.threshold_value
    if badge.metric == "total_duration":
        current //= HOUR
        target = -(-target // HOUR)
    percentage = min(100.0, current / target * 100) if target else 100.0
    return {
        "current": current,
        "target": target,
        "percentage": round(percentage, 1),
        "remaining": _format_remaining(badge.metric, target - current),
    }


def _badge_payload(badge: BadgeDefinition, earned_at: datetime | None = None) -> dict:
    payload = {
        "slug": badge.slug,
        "category": badge.category,
        "level": badge.level,
        "name": badge.name,
        "description": badge.description,
        "requirement": badge.requirement,
        "metric": badge.metric,
        "threshold": badge.threshold_value,
        "earned_count": badge.earned_count,
    }
    if earned_at is not None:
        payload["earned_at"] = earned_at
    return payload


async def _active_badges(db: AsyncSession) -> list[BadgeDefinition]:
    result = await db.execute(
        select(BadgeDefinition)
        .where(BadgeDefinition.is_active.is_(True))
        .order_by(BadgeDefinition.category, BadgeDefinition.level)
    )
    return list(result.scalars().all())


async def _earned_at_by_slug(db: AsyncSession, user_id: int) -> dict[str, datetime]:
    result = await db.execute(
        select(UserBadge.badge_slug, UserBadge.earned_at).where(UserBadge.user_id == user_id)
    )
    return {slug: earned_at for slug, earned_at in result.all()}


async def award_badge(
    db: AsyncSession,
    user_id: int,
    badge: BadgeDefinition,
    now: datetime,
) -> bool:
    """Insert the earned fact. Returns False if the user already holds the badge."""
    stmt = insert_for(db, UserBadge).values(user_id=user_id, badge_slug=badge.slug, earned_at=now)
    stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "badge_slug"]).returning(UserBadge.id)
    inserted = (await db.execute(stmt)).scalar_one_or_none()
    if inserted is None:
        return False
    await db.execute(
        update(BadgeDefinition)
        .where(BadgeDefinition.slug == badge.slug)
        .values(earned_count=BadgeDefinition.earned_count + 1)
    )
    await db.refresh(badge, ["earned_count"])
    return True


async def award_earned_badges(db: AsyncSession, user_id: int, now: datetime) -> list[BadgeDefinition]:
    """Award every badge the user now qualifies for, inside the caller's transaction.

    Tiers are walked in ascending level within each category and a
    category stops at its first unmet threshold above the highest tier
    already held. Tiers below a held tier are always filled in, so holding
    level N implies holding 1..N-1 even after a catalog adds a lower tier
    for a metric that has since dropped. Does not commit.
    """
    badges = await _active_badges(db)
    earned = await _earned_at_by_slug(db, user_id)
    metrics = await compute_metrics(db, user_id)

    newly_earned: list[BadgeDefinition] = []
    for _category, group in groupby(badges, key=lambda b: b.category):
        tiers = list(group)
        held = max((b.level for b in tiers if b.slug in earned), default=0)
        for badge in tiers:
            if badge.level > held and metrics.get(badge.metric, 0) < badge.threshold_value:
                break
            if badge.slug in earned:
                continue
            if await award_badge(db, user_id, badge, now):
                newly_earned.append(badge)
    return newly_earned


async def announce_badges(
    redis: object,
    user_id: int,
    badges: list[BadgeDefinition],
    earned_at: datetime,
) -> list[dict]:
    """Payloads for newly committed awards, published to Redis when available."""
    payloads = []
    for badge in badges:
        payloads.append(_badge_payload(badge, earned_at=earned_at))
        logger.info("User %d earned badge %s", user_id, badge.slug)
        await _publish_badge_earned(redis, user_id, badge, earned_at)
    return payloads


@retry_transient
async def _evaluate_tx(db: AsyncSession, user_id: int, now: datetime) -> list[BadgeDefinition]:
    await lock_user(db, user_id, now=now)
    newly_earned = await award_earned_badges(db, user_id, now)
    await db.commit()
    return newly_earned


async def evaluate(
    db: AsyncSession,
    redis: object,
    user_id: int,
    now: datetime | None = None,
) -> list[dict]:
    """Award every badge whose threshold the user now meets.

    Returns only badges newly earned by this call; a repeat call with
    unchanged metrics returns an empty list. Notifications go out only
    after the awards are committed.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    newly_earned = await _evaluate_tx(db, user_id, now)
    return await announce_badges(redis, user_id, newly_earned, now)


async def _publish_badge_earned(
    redis: object,
    user_id: int,
    badge: BadgeDefinition,
    earned_at: datetime,
) -> None:
    """Push badge-earned notification via Redis pub/sub."""
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            "pubsub:badge_earned",
            json.dumps({
                "user_id": user_id,
                "badge_slug": badge.slug,
                "badge_name": badge.name,
                "category": badge.category,
                "level": badge.level,
                "earned_at": earned_at.isoformat(),
            }),
        )
    except Exception:
        logger.warning("Failed to publish badge_earned notification", exc_info=True)


async def get_badges(db: AsyncSession, user_id: int) -> dict:
    """Earned badges, progress toward the rest, and per-category counts. Read-only."""
    badges = await _active_badges(db)
    earned = await _earned_at_by_slug(db, user_id)
    metrics = await compute_metrics(db, user_id)

    earned_list: list[dict] = []
    in_progress: list[dict] = []
    categories: dict[str, dict[str, int]] = {}
    for badge in badges:
        summary = categories.setdefault(badge.category, {"earned": 0, "total": 0})
        summary["total"] += 1
        if badge.slug in earned:
            summary["earned"] += 1
            earned_list.append(_badge_payload(badge, earned_at=earned[badge.slug]))
        else:
            in_progress.append({
                "badge": _badge_payload(badge),
                "progress": calculate_progress(badge, metrics),
            })

    earned_list.sort(key=lambda b: b["earned_at"], reverse=True)
    return {"earned": earned_list, "in_progress": in_progress, "categories": categories}


async def list_catalog(db: AsyncSession) -> dict[str, list[dict]]:
    """Active badges grouped by category, in level order."""
    grouped: dict[str, list[dict]] = {}
    for badge in await _active_badges(db):
        grouped.setdefault(badge.category, []).append(_badge_payload(badge))
    return grouped


async def get_badge(db: AsyncSession, slug: str) -> dict:
    """Fetch one badge definition by slug."""
    result = await db.execute(select(BadgeDefinition).where(BadgeDefinition.slug == slug))
    badge = result.scalar_one_or_none()
    if badge is None:
        raise BadgeNotFoundError(f"Badge {slug!r} not found")
    return _badge_payload(badge)


async def get_earned_badges(
    db: AsyncSession,
    user_id: int,
    limit: int | None = None,
    year: int | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> list[dict]:
    """Earned badges newest first.

    ``year`` restricts to a UTC calendar year; ``since``/``until`` bound
    ``earned_at`` to a half-open instant range for local-time windows.
    """
    query = (
        select(UserBadge)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
    )
    if year is not None:
        query = query.where(
            UserBadge.earned_at >= datetime(year, 1, 1, tzinfo=timezone.utc),
            UserBadge.earned_at < datetime(year + 1, 1, 1, tzinfo=timezone.utc),
        )
    if since is not None:
        query = query.where(UserBadge.earned_at >= since)
    if until is not None:
        query = query.where(UserBadge.earned_at < until)
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return [_badge_payload(ub.badge, earned_at=ub.earned_at) for ub in result.scalars().unique().all()]
