"""Reading statistics API endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.auth.dependencies import get_current_user_id
from bookpost.database import get_session
from bookpost.stats import service
from bookpost.stats.schemas import MilestoneEntry, MilestonesResponse, TodayDurationResponse

router = APIRouter(prefix="/api/v1", tags=["Reading Stats"])


@router.get("/reading/today", response_model=TodayDurationResponse)
async def get_today(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> TodayDurationResponse:
    """Seconds read today in the user's timezone."""
    return TodayDurationResponse(**await service.get_today(db, user_id))


@router.get("/reading-stats")
async def get_reading_stats(
    dimension: str = Query("week"),
    date_: date | None = Query(None, alias="date"),
    year: int | None = Query(None),
    month: int | None = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Statistics for one dimension: week | month | year | total | calendar."""
    return await service.get_stats(db, user_id, dimension, day=date_, year=year, month=month)


@router.get("/milestones", response_model=MilestonesResponse)
async def get_milestones(
    limit: int = Query(20, ge=1, le=100),
    year: int | None = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> MilestonesResponse:
    """Earned milestones, newest first."""
    milestones = await service.get_milestones(db, user_id, limit=limit, year=year)
    return MilestonesResponse(
        milestones=[MilestoneEntry(**m) for m in milestones],
        total=len(milestones),
    )
