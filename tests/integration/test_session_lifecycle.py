"""Integration tests for the reading session lifecycle."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import insert, select
from sqlalchemy.exc import OperationalError

from bookpost.db.models import BookReadingTotal, DailyReadingStats, ReadingSession
from bookpost.errors import ConflictError, InvalidInputError, SessionNotFoundError, TransientError
from bookpost.gamification import badge_service
from bookpost.sessions.service import (
    end_session,
    get_active_session,
    heartbeat,
    pause_session,
    resume_session,
    start_session,
)

pytestmark = pytest.mark.asyncio

T = datetime(2026, 3, 4, 10, 0, 0, tzinfo=timezone.utc)  # Wednesday


def at(seconds: int) -> datetime:
    return T + timedelta(seconds=seconds)


async def _start(db, user_id=1, book_id="book-1", device_id="phone", now=T):
    result = await start_session(db, user_id, book_id, "ebook", device_id, position="cfi(/6/2)", now=now)
    return result["session_id"]


async def _day_seconds(db, user_id: int, day: date) -> int:
    result = await db.execute(
        select(DailyReadingStats.total_seconds).where(
            DailyReadingStats.user_id == user_id, DailyReadingStats.day == day
        )
    )
    return result.scalar_one_or_none() or 0


class TestStartSession:
    async def test_start_returns_session(self, db_session):
        result = await start_session(db_session, 1, "book-1", "ebook", "phone", now=T)
        assert result["session_id"]
        assert result["started_at"] == T

    async def test_second_start_on_same_device_conflicts(self, db_session):
        session_id = await _start(db_session)
        with pytest.raises(ConflictError) as exc_info:
            await _start(db_session, now=at(5))
        assert exc_info.value.session_id == session_id

    async def test_start_racing_another_start_conflicts(self, db_session, monkeypatch):
        """A competing active row written after the lookup is caught by the unique index."""
        real_execute = db_session.execute
        raced: list[bool] = []

        async def execute(statement, *args, **kwargs):
            result = await real_execute(statement, *args, **kwargs)
            if not raced and getattr(statement, "is_select", False) and "reading_sessions" in str(statement):
                raced.append(True)
                await real_execute(
                    insert(ReadingSession).values(
                        user_id=1,
                        book_id="book-1",
                        book_type="ebook",
                        device_id="phone",
                        started_at=T,
                        last_heartbeat_at=T,
                        state="active",
                        accumulated_seconds=0,
                        pages_read=0,
                        is_paused=False,
                    )
                )
            return result

        monkeypatch.setattr(db_session, "execute", execute)
        with pytest.raises(ConflictError):
            await start_session(db_session, 1, "book-1", "ebook", "phone", now=T)
        monkeypatch.undo()

        assert raced == [True]
        remaining = await db_session.execute(select(ReadingSession.id).where(ReadingSession.user_id == 1))
        assert remaining.all() == []

    async def test_other_device_may_start_concurrently(self, db_session):
        first = await _start(db_session, device_id="phone")
        second = await _start(db_session, device_id="tablet")
        assert first != second

    async def test_start_after_end_is_allowed(self, db_session):
        session_id = await _start(db_session)
        await end_session(db_session, None, 1, session_id, now=at(30))
        assert await _start(db_session, now=at(60)) != session_id


class TestHeartbeat:
    async def test_scenario_a_heartbeats_and_end(self, db_session):
        """Start at T, heartbeat at T+30s and T+65s, end at T+90s: 90s credited."""
        session_id = await _start(db_session)
        first = await heartbeat(db_session, 1, session_id, now=at(30))
        assert first["duration_seconds"] == 30
        second = await heartbeat(db_session, 1, session_id, now=at(65))
        assert second["duration_seconds"] == 65
        assert second["today_duration_seconds"] == 65

        ended = await end_session(db_session, None, 1, session_id, now=at(90))
        assert ended["total_duration_seconds"] == 90
        assert ended["today_duration_seconds"] == 90
        assert ended["total_book_duration_seconds"] == 90
        assert await _day_seconds(db_session, 1, T.date()) == 90

    async def test_gap_is_clamped(self, db_session):
        session_id = await _start(db_session)
        result = await heartbeat(db_session, 1, session_id, now=at(600))
        assert result["duration_seconds"] == 120

    async def test_scenario_b_two_devices_two_books(self, db_session):
        phone = await _start(db_session, book_id="book-1", device_id="phone")
        tablet = await _start(db_session, book_id="book-2", device_id="tablet")

        await heartbeat(db_session, 1, tablet, now=at(60))
        result = await heartbeat(db_session, 1, phone, now=at(60))

        assert result["duration_seconds"] == 60
        assert result["total_book_duration_seconds"] == 60
        assert result["today_duration_seconds"] == 120

    async def test_replayed_heartbeat_is_not_credited_twice(self, db_session):
        session_id = await _start(db_session)
        sent = at(30)
        first = await heartbeat(db_session, 1, session_id, sent_at=sent, now=at(30))
        retry = await heartbeat(db_session, 1, session_id, sent_at=sent, now=at(40))
        assert first["duration_seconds"] == 30
        assert retry["duration_seconds"] == 30
        assert retry["today_duration_seconds"] == 30

        later = await heartbeat(db_session, 1, session_id, sent_at=at(50), now=at(50))
        assert later["duration_seconds"] == 50

    async def test_heartbeat_without_elapsed_time_is_noop(self, db_session):
        session_id = await _start(db_session)
        await heartbeat(db_session, 1, session_id, now=at(30))
        result = await heartbeat(db_session, 1, session_id, now=at(30))
        assert result["duration_seconds"] == 30

    async def test_client_duration_is_ignored(self, db_session):
        """Only server time counts, whatever the client claims."""
        session_id = await _start(db_session)
        result = await heartbeat(db_session, 1, session_id, now=at(10))
        assert result["duration_seconds"] == 10

    async def test_future_client_timestamp_rejected(self, db_session):
        session_id = await _start(db_session)
        with pytest.raises(InvalidInputError):
            await heartbeat(db_session, 1, session_id, sent_at=at(3600), now=at(30))

    async def test_unknown_session(self, db_session):
        with pytest.raises(SessionNotFoundError):
            await heartbeat(db_session, 1, "missing", now=at(30))

    async def test_other_users_session_not_visible(self, db_session):
        session_id = await _start(db_session, user_id=1)
        with pytest.raises(SessionNotFoundError):
            await heartbeat(db_session, 2, session_id, now=at(30))

    async def test_heartbeat_after_end_rejected(self, db_session):
        session_id = await _start(db_session)
        await end_session(db_session, None, 1, session_id, now=at(30))
        with pytest.raises(SessionNotFoundError):
            await heartbeat(db_session, 1, session_id, now=at(60))

    async def test_position_and_pages_recorded(self, db_session):
        session_id = await _start(db_session)
        await heartbeat(db_session, 1, session_id, position="cfi(/6/14)", pages_read=3, now=at(60))
        result = await db_session.execute(
            select(BookReadingTotal).where(BookReadingTotal.user_id == 1, BookReadingTotal.book_id == "book-1")
        )
        book = result.scalar_one()
        assert book.last_position == "cfi(/6/14)"
        assert book.pages_read == 3


class TestMidnight:
    async def test_delta_across_local_midnight_is_split(self, db_session, make_user):
        await make_user(1, timezone_name="Asia/Tokyo")
        start = datetime(2026, 3, 4, 14, 59, 0, tzinfo=timezone.utc)  # 23:59 in Tokyo
        session_id = await _start(db_session, now=start)
        await heartbeat(db_session, 1, session_id, now=start + timedelta(seconds=120))

        assert await _day_seconds(db_session, 1, date(2026, 3, 4)) == 60
        assert await _day_seconds(db_session, 1, date(2026, 3, 5)) == 60


class TestPauseResume:
    async def test_paused_time_is_not_credited(self, db_session):
        session_id = await _start(db_session)
        paused = await pause_session(db_session, 1, session_id, now=at(30))
        assert paused["duration_seconds"] == 30
        assert paused["is_paused"] is True

        idle = await heartbeat(db_session, 1, session_id, now=at(90))
        assert idle["duration_seconds"] == 30

        await resume_session(db_session, 1, session_id, now=at(100))
        result = await heartbeat(db_session, 1, session_id, now=at(130))
        assert result["duration_seconds"] == 60
        assert result["is_paused"] is False

    async def test_double_pause_conflicts(self, db_session):
        session_id = await _start(db_session)
        await pause_session(db_session, 1, session_id, now=at(10))
        with pytest.raises(ConflictError):
            await pause_session(db_session, 1, session_id, now=at(20))

    async def test_resume_running_session_conflicts(self, db_session):
        session_id = await _start(db_session)
        with pytest.raises(ConflictError):
            await resume_session(db_session, 1, session_id, now=at(10))


class TestEndSession:
    async def test_repeated_end_returns_recorded_totals(self, db_session):
        session_id = await _start(db_session)
        first = await end_session(db_session, None, 1, session_id, now=at(60))
        again = await end_session(db_session, None, 1, session_id, now=at(600))
        assert again["total_duration_seconds"] == first["total_duration_seconds"] == 60
        assert again["today_duration_seconds"] == 60
        assert again["milestones_achieved"] == []

    async def test_failed_badge_step_rolls_back_the_end(self, db_session, monkeypatch, override_settings):
        """The final delta, session state and badge awards commit together or not at all."""
        override_settings(transient_retry_base_delay_seconds=0)
        session_id = await _start(db_session)

        async def locked(db, user_id):
            raise OperationalError("SELECT user_streaks", {}, Exception("database is locked"))

        monkeypatch.setattr(badge_service, "compute_metrics", locked)
        with pytest.raises(TransientError):
            await end_session(db_session, None, 1, session_id, now=at(60))
        monkeypatch.undo()

        row = (
            await db_session.execute(
                select(ReadingSession.state, ReadingSession.accumulated_seconds).where(ReadingSession.id == session_id)
            )
        ).one()
        assert tuple(row) == ("active", 0)
        assert await _day_seconds(db_session, 1, T.date()) == 0

        ended = await end_session(db_session, None, 1, session_id, now=at(90))
        assert ended["total_duration_seconds"] == 90

    async def test_end_records_state(self, db_session):
        session_id = await _start(db_session)
        await end_session(db_session, None, 1, session_id, position="cfi(/6/20)", now=at(45))
        session = (
            await db_session.execute(select(ReadingSession).where(ReadingSession.id == session_id))
        ).scalar_one()
        assert session.state == "ended"
        assert session.end_reason == "completed"
        assert session.ended_at == at(45)
        assert session.last_position == "cfi(/6/20)"

    async def test_finished_marks_book(self, db_session):
        session_id = await _start(db_session)
        await end_session(db_session, None, 1, session_id, finished=True, now=at(45))
        book = (
            await db_session.execute(select(BookReadingTotal).where(BookReadingTotal.user_id == 1))
        ).scalar_one()
        assert book.finished_at == at(45)
        day = (
            await db_session.execute(select(DailyReadingStats).where(DailyReadingStats.user_id == 1))
        ).scalar_one()
        assert day.finished_count == 1


class TestActiveSession:
    async def test_no_active_session(self, db_session):
        assert await get_active_session(db_session, 1) is None

    async def test_most_recent_heartbeat_wins(self, db_session):
        phone = await _start(db_session, book_id="book-1", device_id="phone")
        tablet = await _start(db_session, book_id="book-2", device_id="tablet")
        await heartbeat(db_session, 1, phone, now=at(30))
        await heartbeat(db_session, 1, tablet, now=at(60))

        active = await get_active_session(db_session, 1)
        assert active["session_id"] == tablet
        assert active["book_id"] == "book-2"
        assert active["duration_seconds"] == 60
