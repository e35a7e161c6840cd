"""Daily reading goal API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.auth.dependencies import get_current_user_id
from bookpost.database import get_session
from bookpost.goals import service
from bookpost.goals.schemas import DailyGoalResponse, SetDailyGoalRequest, SetDailyGoalResponse

router = APIRouter(prefix="/api/v1/goals", tags=["Goals"])


@router.get("/daily", response_model=DailyGoalResponse)
async def get_daily_goal(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> DailyGoalResponse:
    """Today's reading goal and progress."""
    return DailyGoalResponse(**await service.get_daily_goal(db, user_id))


@router.put("/daily", response_model=SetDailyGoalResponse)
async def set_daily_goal(
    body: SetDailyGoalRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> SetDailyGoalResponse:
    return SetDailyGoalResponse(**await service.set_daily_goal(db, user_id, body.target_minutes))
