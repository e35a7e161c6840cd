"""Pydantic response models for leaderboard endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    display_name: str
    avatar_url: str | None = None
    duration_seconds: int
    reading_days: int
    previous_rank: int | None = None
    rank_change: int | None = None
    is_new: bool
    likes_count: int = 0
    is_liked: bool = False
    is_current_user: bool = False


class LeaderboardResponse(BaseModel):
    week_start: date
    week_end: date
    week_iso: str
    window_start: datetime
    window_end: datetime
    scope: str
    settled: bool
    settled_at: datetime | None = None
    entries: list[LeaderboardEntry]
    my_ranking: LeaderboardEntry | None = None
    total_participants: int


class LikeResponse(BaseModel):
    success: bool
    likes_count: int
