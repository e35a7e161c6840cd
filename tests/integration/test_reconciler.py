"""Integration tests for abandoned session reconciliation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from bookpost.db.models import ReadingSession
from bookpost.errors import SessionNotFoundError
from bookpost.sessions.reconciler import reconcile_abandoned
from bookpost.sessions.service import end_session, get_active_session, heartbeat, start_session

pytestmark = pytest.mark.asyncio

T = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


async def _session(db, session_id: str) -> ReadingSession:
    result = await db.execute(
        select(ReadingSession).where(ReadingSession.id == session_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestReconcileAbandoned:
    async def test_idle_session_ended_with_clamped_credit(self, db_session):
        session_id = (await start_session(db_session, 1, "book-1", "ebook", "phone", now=T))["session_id"]
        await heartbeat(db_session, 1, session_id, now=T + timedelta(seconds=60))

        ended = await reconcile_abandoned(db_session, None, now=T + timedelta(seconds=60 + 1801))
        assert ended == 1

        session = await _session(db_session, session_id)
        assert session.state == "ended"
        assert session.end_reason == "abandoned"
        assert session.accumulated_seconds == 180
        assert session.ended_at == T + timedelta(seconds=180)
        assert await get_active_session(db_session, 1) is None

    async def test_recent_session_left_alone(self, db_session):
        session_id = (await start_session(db_session, 1, "book-1", "ebook", "phone", now=T))["session_id"]
        assert await reconcile_abandoned(db_session, None, now=T + timedelta(seconds=1000)) == 0
        assert (await _session(db_session, session_id)).state == "active"

    async def test_end_after_abandon_returns_recorded_totals(self, db_session):
        session_id = (await start_session(db_session, 1, "book-1", "ebook", "phone", now=T))["session_id"]
        await reconcile_abandoned(db_session, None, now=T + timedelta(hours=1))

        result = await end_session(db_session, None, 1, session_id, now=T + timedelta(hours=2))
        assert result["total_duration_seconds"] == 120

    async def test_heartbeat_after_abandon_rejected(self, db_session):
        session_id = (await start_session(db_session, 1, "book-1", "ebook", "phone", now=T))["session_id"]
        await reconcile_abandoned(db_session, None, now=T + timedelta(hours=1))
        with pytest.raises(SessionNotFoundError):
            await heartbeat(db_session, 1, session_id, now=T + timedelta(hours=1, seconds=5))

    async def test_device_can_start_again_after_abandon(self, db_session):
        first = (await start_session(db_session, 1, "book-1", "ebook", "phone", now=T))["session_id"]
        await reconcile_abandoned(db_session, None, now=T + timedelta(hours=1))
        second = await start_session(db_session, 1, "book-1", "ebook", "phone", now=T + timedelta(hours=1))
        assert second["session_id"] != first

    async def test_batches_across_users(self, db_session):
        for user_id in (1, 2, 3):
            await start_session(db_session, user_id, "book-1", "ebook", "phone", now=T)
        assert await reconcile_abandoned(db_session, None, now=T + timedelta(hours=1)) == 3
        assert await reconcile_abandoned(db_session, None, now=T + timedelta(hours=2)) == 0
