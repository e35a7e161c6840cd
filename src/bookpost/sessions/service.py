"""Reading session lifecycle: start, heartbeat, pause/resume, end, offline sync.

Every mutation runs in one transaction serialised on the user's row lock,
so a heartbeat's delta, the aggregates it feeds, and the streak update it
may trigger commit together or not at all. Elapsed time is always measured
from server timestamps; client-reported durations are ignored.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.config import get_settings
from bookpost.db.models import SESSION_ACTIVE, SESSION_ENDED, BadgeDefinition, ReadingSession, User
from bookpost.db.transactions import lock_user, retry_transient
from bookpost.errors import ConflictError, InvalidInputError, SessionNotFoundError
from bookpost.gamification.badge_service import announce_badges, award_earned_badges
from bookpost.gamification.streak_service import on_day_qualified
from bookpost.stats.aggregator import (
    apply_delta,
    get_book_seconds,
    get_day_seconds,
    mark_book_finished,
    user_timezone,
)
from bookpost.timeframes import as_utc, local_date

logger = structlog.get_logger()

END_COMPLETED = "completed"
END_ABANDONED = "abandoned"
END_OFFLINE = "offline"


def clamp_delta(last: datetime, now: datetime, max_gap: int) -> int:
    """Whole seconds between two heartbeats, bounded to ``[0, max_gap]``."""
    elapsed = int((now - last).total_seconds())
    return max(0, min(elapsed, max_gap))


async def load_session(db: AsyncSession, user_id: int, session_id: str) -> ReadingSession:
    result = await db.execute(
        select(ReadingSession)
        .where(ReadingSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    session = result.scalar_one_or_none()
    if session is None or session.user_id != user_id:
        raise SessionNotFoundError()
    return session


async def credit_elapsed(
    db: AsyncSession,
    user: User,
    session: ReadingSession,
    now: datetime,
    *,
    pages_read: int = 0,
    position: str | None = None,
) -> int:
    """Credit the clamped time since the last heartbeat and advance the session.

    Paused sessions advance their clock without credit. Returns seconds credited.
    """
    last = session.last_heartbeat_at
    max_gap = get_settings().max_heartbeat_gap_seconds
    delta = 0 if session.is_paused else clamp_delta(last, now, max_gap)
    if delta == max_gap and (now - last).total_seconds() > max_gap:
        logger.info("heartbeat_gap_clamped", session_id=session.id, gap_seconds=int((now - last).total_seconds()))

    qualified = await apply_delta(
        db,
        user,
        session.book_id,
        session.book_type,
        last,
        last + timedelta(seconds=delta),
        delta,
        pages_read=pages_read,
        position=position,
        now=now,
    )
    for day in qualified:
        await on_day_qualified(db, user.id, day, now=now)

    session.accumulated_seconds += delta
    session.pages_read += pages_read
    if now > last:
        session.last_heartbeat_at = now
    if position is not None:
        session.last_position = position
    return delta


async def _durations(db: AsyncSession, user: User, session: ReadingSession, now: datetime) -> dict:
    today = local_date(now, user_timezone(user))
    return {
        "session_id": session.id,
        "duration_seconds": session.accumulated_seconds,
        "today_duration_seconds": await get_day_seconds(db, user.id, today),
        "total_book_duration_seconds": await get_book_seconds(
            db, user.id, session.book_id, session.book_type
        ),
        "is_paused": session.is_paused,
    }


def _check_skew(sent_at: datetime | None, now: datetime) -> datetime | None:
    if sent_at is None:
        return None
    sent_at = as_utc(sent_at)
    if sent_at > now + timedelta(seconds=get_settings().max_clock_skew_seconds):
        raise InvalidInputError("Client timestamp is too far in the future")
    return sent_at


def _is_replay(session: ReadingSession, sent_at: datetime | None) -> bool:
    """A retried request carries a client timestamp already applied."""
    return (
        sent_at is not None
        and session.last_client_sent_at is not None
        and sent_at <= session.last_client_sent_at
    )


@retry_transient
async def start_session(
    db: AsyncSession,
    user_id: int,
    book_id: str,
    book_type: str,
    device_id: str,
    position: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Open a session, unless this device already has one active for the book."""
    if now is None:
        now = datetime.now(timezone.utc)
    await lock_user(db, user_id, now=now)

    result = await db.execute(
        select(ReadingSession).where(
            ReadingSession.user_id == user_id,
            ReadingSession.book_id == book_id,
            ReadingSession.book_type == book_type,
            ReadingSession.device_id == device_id,
            ReadingSession.state == SESSION_ACTIVE,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        raise ConflictError("An active session already exists for this book on this device", session_id=existing.id)

    session = ReadingSession(
        user_id=user_id,
        book_id=book_id,
        book_type=book_type,
        device_id=device_id,
        start_position=position,
        last_position=position,
        started_at=now,
        last_heartbeat_at=now,
        state=SESSION_ACTIVE,
        accumulated_seconds=0,
        pages_read=0,
        is_paused=False,
    )
    db.add(session)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("An active session already exists for this book on this device") from exc

    await db.commit()
    logger.info("reading_session_started", user_id=user_id, session_id=session.id, book_id=book_id)
    return {"session_id": session.id, "started_at": session.started_at}


@retry_transient
async def heartbeat(
    db: AsyncSession,
    user_id: int,
    session_id: str,
    position: str | None = None,
    pages_read: int = 0,
    sent_at: datetime | None = None,
    now: datetime | None = None,
) -> dict:
    """Credit time since the last heartbeat and return session/today/book durations.

    A retried heartbeat (client timestamp at or before the last applied one,
    or no server time elapsed) changes nothing and returns current state.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    sent_at = _check_skew(sent_at, now)
    user = await lock_user(db, user_id, now=now)
    session = await load_session(db, user_id, session_id)
    if session.state != SESSION_ACTIVE:
        raise SessionNotFoundError()

    if _is_replay(session, sent_at) or now <= session.last_heartbeat_at:
        logger.debug("heartbeat_noop", session_id=session.id)
        payload = await _durations(db, user, session, now)
        await db.rollback()
        return payload

    await credit_elapsed(db, user, session, now, pages_read=pages_read, position=position)
    if sent_at is not None:
        session.last_client_sent_at = sent_at
    await db.flush()
    payload = await _durations(db, user, session, now)
    await db.commit()
    return payload


@retry_transient
async def pause_session(
    db: AsyncSession,
    user_id: int,
    session_id: str,
    position: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Credit elapsed time and stop the clock until resumed."""
    if now is None:
        now = datetime.now(timezone.utc)
    user = await lock_user(db, user_id, now=now)
    session = await load_session(db, user_id, session_id)
    if session.state != SESSION_ACTIVE:
        raise SessionNotFoundError()
    if session.is_paused:
        raise ConflictError("Session is already paused", session_id=session.id)

    await credit_elapsed(db, user, session, now, position=position)
    session.is_paused = True
    session.paused_at = now
    await db.flush()
    payload = await _durations(db, user, session, now)
    await db.commit()
    return payload


@retry_transient
async def resume_session(
    db: AsyncSession,
    user_id: int,
    session_id: str,
    now: datetime | None = None,
) -> dict:
    """Restart the clock of a paused session at ``now``."""
    if now is None:
        now = datetime.now(timezone.utc)
    user = await lock_user(db, user_id, now=now)
    session = await load_session(db, user_id, session_id)
    if session.state != SESSION_ACTIVE:
        raise SessionNotFoundError()
    if not session.is_paused:
        raise ConflictError("Session is not paused", session_id=session.id)

    session.is_paused = False
    session.paused_at = None
    if now > session.last_heartbeat_at:
        session.last_heartbeat_at = now
    await db.flush()
    payload = await _durations(db, user, session, now)
    await db.commit()
    return payload


@retry_transient
async def _end_session_tx(
    db: AsyncSession,
    user_id: int,
    session_id: str,
    position: str | None,
    pages_read: int,
    finished: bool,
    sent_at: datetime | None,
    now: datetime,
) -> tuple[dict, list[BadgeDefinition]]:
    user = await lock_user(db, user_id, now=now)
    session = await load_session(db, user_id, session_id)

    if session.state == SESSION_ENDED:
        # Retried end: report what was recorded.
        payload = await _durations(db, user, session, now)
        await db.rollback()
        return payload, []

    if _is_replay(session, sent_at):
        if position is not None:
            session.last_position = position
    else:
        await credit_elapsed(db, user, session, now, pages_read=pages_read, position=position)
        if sent_at is not None:
            session.last_client_sent_at = sent_at

    if finished:
        await mark_book_finished(db, user, session.book_id, session.book_type, session.last_heartbeat_at)

    session.state = SESSION_ENDED
    session.end_reason = END_COMPLETED
    session.ended_at = session.last_heartbeat_at
    session.is_paused = False
    await db.flush()
    payload = await _durations(db, user, session, now)
    badges = await award_earned_badges(db, user_id, now)
    await db.commit()
    logger.info(
        "reading_session_ended",
        user_id=user_id,
        session_id=session.id,
        duration_seconds=session.accumulated_seconds,
    )
    return payload, badges


async def end_session(
    db: AsyncSession,
    redis: object,
    user_id: int,
    session_id: str,
    position: str | None = None,
    pages_read: int = 0,
    finished: bool = False,
    sent_at: datetime | None = None,
    now: datetime | None = None,
) -> dict:
    """End a session; the final delta, streak and any badges it earns commit together.

    Ending an already-ended session returns its recorded totals.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    sent_at = _check_skew(sent_at, now)
    payload, badges = await _end_session_tx(db, user_id, session_id, position, pages_read, finished, sent_at, now)
    milestones = await announce_badges(redis, user_id, badges, now)
    return {
        "session_id": payload["session_id"],
        "total_duration_seconds": payload["duration_seconds"],
        "today_duration_seconds": payload["today_duration_seconds"],
        "total_book_duration_seconds": payload["total_book_duration_seconds"],
        "milestones_achieved": milestones,
    }


async def get_active_session(db: AsyncSession, user_id: int) -> dict | None:
    """Most recently heartbeated active session across all the user's devices."""
    result = await db.execute(
        select(ReadingSession)
        .where(
            ReadingSession.user_id == user_id,
            ReadingSession.state == SESSION_ACTIVE,
        )
        .order_by(ReadingSession.last_heartbeat_at.desc(), ReadingSession.started_at.desc())
        .limit(1)
    )
    session = result.scalar_one_or_none()
    if session is None:
        return None
    return {
        "session_id": session.id,
        "book_id": session.book_id,
        "book_type": session.book_type,
        "device_id": session.device_id,
        "position": session.last_position,
        "started_at": session.started_at,
        "last_heartbeat_at": session.last_heartbeat_at,
        "duration_seconds": session.accumulated_seconds,
        "is_paused": session.is_paused,
    }


@retry_transient
async def _sync_offline_tx(
    db: AsyncSession,
    user_id: int,
    book_id: str,
    book_type: str,
    device_id: str,
    started_at: datetime,
    ended_at: datetime,
    client_session_key: str,
    start_position: str | None,
    end_position: str | None,
    pages_read: int,
    finished: bool,
    now: datetime,
) -> tuple[dict, list[BadgeDefinition]]:
    user = await lock_user(db, user_id, now=now)
    result = await db.execute(
        select(ReadingSession).where(
            ReadingSession.user_id == user_id,
            ReadingSession.client_session_key == client_session_key,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        payload = {"session_id": existing.id, "credited_seconds": existing.accumulated_seconds, "duplicate": True}
        await db.rollback()
        return payload, []

    span = int((ended_at - started_at).total_seconds())
    credit = min(span, get_settings().max_offline_session_seconds)

    session = ReadingSession(
        user_id=user_id,
        book_id=book_id,
        book_type=book_type,
        device_id=device_id,
        start_position=start_position,
        last_position=end_position,
        started_at=started_at,
        last_heartbeat_at=ended_at,
        ended_at=ended_at,
        state=SESSION_ENDED,
        end_reason=END_OFFLINE,
        accumulated_seconds=credit,
        pages_read=pages_read,
        is_paused=False,
        client_session_key=client_session_key,
    )
    db.add(session)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        result = await db.execute(
            select(ReadingSession).where(
                ReadingSession.user_id == user_id,
                ReadingSession.client_session_key == client_session_key,
            )
        )
        existing = result.scalar_one()
        payload = {"session_id": existing.id, "credited_seconds": existing.accumulated_seconds, "duplicate": True}
        await db.rollback()
        return payload, []

    qualified: list[date] = await apply_delta(
        db,
        user,
        book_id,
        book_type,
        started_at,
        ended_at,
        credit,
        pages_read=pages_read,
        position=end_position,
        now=now,
    )
    for day in sorted(qualified):
        await on_day_qualified(db, user_id, day, now=now)
    if finished:
        await mark_book_finished(db, user, book_id, book_type, ended_at)

    badges = await award_earned_badges(db, user_id, now)
    await db.commit()
    logger.info(
        "offline_session_synced",
        user_id=user_id,
        session_id=session.id,
        credited_seconds=credit,
        backfilled_days=[d.isoformat() for d in qualified],
    )
    return {"session_id": session.id, "credited_seconds": credit, "duplicate": False}, badges


async def sync_offline_session(
    db: AsyncSession,
    redis: object,
    user_id: int,
    book_id: str,
    book_type: str,
    device_id: str,
    started_at: datetime,
    ended_at: datetime,
    client_session_key: str,
    start_position: str | None = None,
    end_position: str | None = None,
    pages_read: int = 0,
    finished: bool = False,
    now: datetime | None = None,
) -> dict:
    """Record a session read offline, awarding any badges it earns in the same transaction.

    Idempotent per ``client_session_key``. Credit is the wall-clock span,
    capped, split across the days it covered; a day that becomes
    qualifying before the recorded streak end triggers a streak rebuild.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    started_at = as_utc(started_at)
    ended_at = as_utc(ended_at)
    if ended_at <= started_at:
        raise InvalidInputError("ended_at must be after started_at")
    if ended_at > now + timedelta(seconds=get_settings().max_clock_skew_seconds):
        raise InvalidInputError("Offline session ends in the future")

    payload, badges = await _sync_offline_tx(
        db,
        user_id,
        book_id,
        book_type,
        device_id,
        started_at,
        ended_at,
        client_session_key,
        start_position,
        end_position,
        pages_read,
        finished,
        now,
    )
    milestones = await announce_badges(redis, user_id, badges, now)
    return {**payload, "milestones_achieved": milestones}
