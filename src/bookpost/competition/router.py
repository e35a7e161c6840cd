"""Weekly leaderboard API endpoints."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.auth.dependencies import get_current_user_id
from bookpost.competition import leaderboard_service
from bookpost.competition.schemas import LeaderboardResponse, LikeResponse
from bookpost.database import get_session
from bookpost.timeframes import parse_week_start

router = APIRouter(prefix="/api/v1/leaderboard", tags=["Leaderboard"])


@router.get("", response_model=LeaderboardResponse)
async def get_leaderboard(
    scope: Literal["all", "friends"] = Query("all"),
    week: str | None = Query(None, description="Monday date (2026-02-23) or ISO week (2026-W09)"),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> LeaderboardResponse:
    """Ranked weekly reading durations; defaults to the open week."""
    week_start = parse_week_start(week) if week else None
    result = await leaderboard_service.get_leaderboard(db, user_id, scope=scope, week_start=week_start)
    return LeaderboardResponse(**result)


@router.post("/{target_user_id}/like", response_model=LikeResponse)
async def like_entry(
    target_user_id: int,
    week: str | None = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> LikeResponse:
    """Like a reader's entry; once per reader per week."""
    week_start = parse_week_start(week) if week else None
    result = await leaderboard_service.like_entry(db, user_id, target_user_id, week_start=week_start)
    return LikeResponse(**result)
