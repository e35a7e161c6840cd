"""HTTP-level tests for the reading engine API."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio

START_BODY = {"book_id": "book-1", "book_type": "ebook", "device_id": "phone", "position": "cfi(/6/2)"}


class TestAuth:
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/v1/reading/today")
        assert response.status_code in (401, 403)

    async def test_invalid_token(self, client: AsyncClient):
        response = await client.get("/api/v1/reading/today", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    async def test_refresh_token_rejected(self, client: AsyncClient, make_token):
        token = make_token(1, token_type="refresh")
        response = await client.get("/api/v1/reading/today", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestSessionEndpoints:
    async def test_full_lifecycle(self, client: AsyncClient, auth_headers):
        headers = auth_headers(1)
        start = await client.post("/api/v1/reading/sessions/start", json=START_BODY, headers=headers)
        assert start.status_code == 200
        session_id = start.json()["session_id"]

        active = await client.get("/api/v1/reading/sessions/active", headers=headers)
        assert active.json()["session"]["session_id"] == session_id
        assert active.json()["session"]["position"] == "cfi(/6/2)"

        beat = await client.post(
            f"/api/v1/reading/sessions/{session_id}/heartbeat",
            json={"position": "cfi(/6/4)", "reported_duration_seconds": 99999},
            headers=headers,
        )
        assert beat.status_code == 200
        assert beat.json()["duration_seconds"] < 5

        pause = await client.post(f"/api/v1/reading/sessions/{session_id}/pause", headers=headers)
        assert pause.json()["is_paused"] is True
        resume = await client.post(f"/api/v1/reading/sessions/{session_id}/resume", headers=headers)
        assert resume.json()["is_paused"] is False

        end = await client.post(f"/api/v1/reading/sessions/{session_id}/end", json={}, headers=headers)
        assert end.status_code == 200
        assert end.json()["session_id"] == session_id
        assert end.json()["milestones_achieved"] == []

        active = await client.get("/api/v1/reading/sessions/active", headers=headers)
        assert active.json() == {"session": None}

    async def test_duplicate_start_conflict(self, client: AsyncClient, auth_headers):
        headers = auth_headers(1)
        first = await client.post("/api/v1/reading/sessions/start", json=START_BODY, headers=headers)
        second = await client.post("/api/v1/reading/sessions/start", json=START_BODY, headers=headers)
        assert second.status_code == 409
        assert second.json()["code"] == "conflict"
        assert second.json()["session_id"] == first.json()["session_id"]

    async def test_unknown_book_type(self, client: AsyncClient, auth_headers):
        body = {**START_BODY, "book_type": "scroll"}
        response = await client.post("/api/v1/reading/sessions/start", json=body, headers=auth_headers(1))
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_input"

    async def test_unknown_field_rejected(self, client: AsyncClient, auth_headers):
        body = {**START_BODY, "duration_seconds": 600}
        response = await client.post("/api/v1/reading/sessions/start", json=body, headers=auth_headers(1))
        assert response.status_code == 422

    async def test_heartbeat_unknown_session(self, client: AsyncClient, auth_headers):
        response = await client.post("/api/v1/reading/sessions/nope/heartbeat", json={}, headers=auth_headers(1))
        assert response.status_code == 404
        assert response.json()["code"] == "session_not_found"

    async def test_other_user_cannot_end_session(self, client: AsyncClient, auth_headers):
        start = await client.post("/api/v1/reading/sessions/start", json=START_BODY, headers=auth_headers(1))
        session_id = start.json()["session_id"]
        response = await client.post(
            f"/api/v1/reading/sessions/{session_id}/end", json={}, headers=auth_headers(2),
        )
        assert response.status_code == 404

    async def test_offline_sync(self, client: AsyncClient, auth_headers):
        ended = datetime.now(timezone.utc) - timedelta(hours=1)
        body = {
            "book_id": "book-1",
            "book_type": "magazine",
            "device_id": "kindle",
            "started_at": (ended - timedelta(minutes=20)).isoformat(),
            "ended_at": ended.isoformat(),
            "client_session_key": "kindle-0001",
        }
        first = await client.post("/api/v1/reading/sessions/offline", json=body, headers=auth_headers(1))
        assert first.status_code == 200
        assert first.json()["credited_seconds"] == 1200
        assert first.json()["duplicate"] is False

        again = await client.post("/api/v1/reading/sessions/offline", json=body, headers=auth_headers(1))
        assert again.json()["duplicate"] is True
        assert again.json()["session_id"] == first.json()["session_id"]

    async def test_offline_sync_backwards_interval(self, client: AsyncClient, auth_headers):
        ended = datetime.now(timezone.utc) - timedelta(hours=1)
        body = {
            "book_id": "book-1",
            "book_type": "ebook",
            "device_id": "kindle",
            "started_at": ended.isoformat(),
            "ended_at": (ended - timedelta(minutes=5)).isoformat(),
            "client_session_key": "kindle-0002",
        }
        response = await client.post("/api/v1/reading/sessions/offline", json=body, headers=auth_headers(1))
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_input"


class TestStatsEndpoints:
    async def test_today(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/v1/reading/today", headers=auth_headers(1))
        assert response.status_code == 200
        assert response.json()["duration_seconds"] == 0
        assert response.json()["formatted"] == "0m"

    @pytest.mark.parametrize("dimension", ["week", "month", "year", "total", "calendar"])
    async def test_dimensions(self, client: AsyncClient, auth_headers, dimension):
        response = await client.get(
            "/api/v1/reading-stats", params={"dimension": dimension}, headers=auth_headers(1),
        )
        assert response.status_code == 200
        assert response.json()["dimension"] == dimension

    async def test_week_for_date(self, client: AsyncClient, auth_headers):
        response = await client.get(
            "/api/v1/reading-stats", params={"dimension": "week", "date": "2026-03-04"}, headers=auth_headers(1),
        )
        assert response.json()["date_range"]["start"] == "2026-03-02"

    async def test_invalid_dimension(self, client: AsyncClient, auth_headers):
        response = await client.get(
            "/api/v1/reading-stats", params={"dimension": "decade"}, headers=auth_headers(1),
        )
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_dimension"

    async def test_milestones(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/v1/milestones", headers=auth_headers(1))
        assert response.status_code == 200
        assert response.json() == {"milestones": [], "total": 0}


class TestBadgeEndpoints:
    async def test_catalog(self, client: AsyncClient):
        response = await client.get("/api/v1/badges")
        assert response.status_code == 200
        data = response.json()
        assert data["catalog_version"]
        assert set(data["categories"]) == {"books_finished", "reading_days", "reading_duration", "reading_streak"}

    async def test_single_badge(self, client: AsyncClient):
        response = await client.get("/api/v1/badges/hours_100")
        assert response.status_code == 200
        assert response.json()["threshold"] == 100 * 3600

    async def test_unknown_badge(self, client: AsyncClient):
        response = await client.get("/api/v1/badges/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "badge_not_found"

    async def test_my_badges(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/v1/users/me/badges", headers=auth_headers(1))
        assert response.status_code == 200
        data = response.json()
        assert data["earned"] == []
        assert data["categories"]["reading_streak"] == {"earned": 0, "total": 6}

    async def test_check_badges(self, client: AsyncClient, auth_headers):
        response = await client.post("/api/v1/users/me/badges/check", headers=auth_headers(1))
        assert response.status_code == 200
        assert response.json() == {"newly_earned": []}

    async def test_streak(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/v1/users/me/streak", headers=auth_headers(1))
        assert response.status_code == 200
        assert response.json()["current_streak_days"] == 0
        assert response.json()["qualifying_minimum_seconds"] == 300


class TestLeaderboardEndpoints:
    async def test_empty_board(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/v1/leaderboard", headers=auth_headers(1))
        assert response.status_code == 200
        assert response.json()["entries"] == []
        assert response.json()["settled"] is False

    async def test_iso_week_param(self, client: AsyncClient, auth_headers):
        response = await client.get(
            "/api/v1/leaderboard", params={"week": "2026-W10", "scope": "friends"}, headers=auth_headers(1),
        )
        assert response.status_code == 200
        assert response.json()["week_start"] == "2026-03-02"
        assert response.json()["scope"] == "friends"

    async def test_non_monday_week(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/v1/leaderboard", params={"week": "2026-03-04"}, headers=auth_headers(1))
        assert response.status_code == 422

    async def test_unknown_scope(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/v1/leaderboard", params={"scope": "galaxy"}, headers=auth_headers(1))
        assert response.status_code == 422

    async def test_like_flow(self, client: AsyncClient, auth_headers):
        ended = datetime.now(timezone.utc) - timedelta(seconds=30)
        await client.post(
            "/api/v1/reading/sessions/offline",
            json={
                "book_id": "book-1",
                "book_type": "ebook",
                "device_id": "kindle",
                "started_at": (ended - timedelta(minutes=1)).isoformat(),
                "ended_at": ended.isoformat(),
                "client_session_key": "k",
            },
            headers=auth_headers(1),
        )
        week = (await client.get("/api/v1/leaderboard", headers=auth_headers(1))).json()["week_start"]

        like = await client.post("/api/v1/leaderboard/1/like", params={"week": week}, headers=auth_headers(2))
        assert like.status_code == 200
        assert like.json() == {"success": True, "likes_count": 1}

        again = await client.post("/api/v1/leaderboard/1/like", params={"week": week}, headers=auth_headers(2))
        assert again.status_code == 409
        assert again.json()["code"] == "already_liked"

        board = (await client.get("/api/v1/leaderboard", headers=auth_headers(2))).json()
        assert board["entries"][0]["likes_count"] == 1
        assert board["entries"][0]["is_liked"] is True

    async def test_like_without_entry(self, client: AsyncClient, auth_headers):
        response = await client.post("/api/v1/leaderboard/42/like", headers=auth_headers(1))
        assert response.status_code == 404


class TestGoalEndpoints:
    async def test_default_goal(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/v1/goals/daily", headers=auth_headers(1))
        assert response.status_code == 200
        body = response.json()
        assert body["has_goal"] is False
        assert body["goal"]["target_minutes"] == 30
        assert body["streak"] == {"current": 0, "max": 0}

    async def test_set_goal(self, client: AsyncClient, auth_headers):
        response = await client.put("/api/v1/goals/daily", json={"target_minutes": 45}, headers=auth_headers(1))
        assert response.status_code == 200
        assert response.json()["message"] == "Daily goal set to 45 minutes"

        response = await client.get("/api/v1/goals/daily", headers=auth_headers(1))
        assert response.json()["has_goal"] is True
        assert response.json()["goal"]["target_minutes"] == 45

    @pytest.mark.parametrize("minutes", [4, 481])
    async def test_out_of_range_goal(self, client: AsyncClient, auth_headers, minutes):
        response = await client.put(
            "/api/v1/goals/daily", json={"target_minutes": minutes}, headers=auth_headers(1),
        )
        assert response.status_code == 422

    async def test_goal_requires_token(self, client: AsyncClient):
        response = await client.get("/api/v1/goals/daily")
        assert response.status_code in (401, 403)
