"""Badge and streak API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.auth.dependencies import get_current_user_id
from bookpost.database import get_session
from bookpost.gamification import badge_service
from bookpost.gamification.catalog import CATALOG_VERSION
from bookpost.gamification.schemas import (
    AllBadgesResponse,
    BadgeDefinitionResponse,
    CheckBadgesResponse,
    EarnedBadgeResponse,
    StreakResponse,
    UserBadgesResponse,
)
from bookpost.gamification.streak_service import get_streak_view
from bookpost.redis_client import get_redis_or_none

router = APIRouter(prefix="/api/v1", tags=["Badges"])


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)) -> AllBadgesResponse:
    """All active badge tiers grouped by category."""
    grouped = await badge_service.list_catalog(db)
    return AllBadgesResponse(
        catalog_version=CATALOG_VERSION,
        categories={
            category: [BadgeDefinitionResponse(**b) for b in badges] for category, badges in grouped.items()
        },
    )


@router.get("/badges/{slug}", response_model=BadgeDefinitionResponse)
async def get_badge(slug: str, db: AsyncSession = Depends(get_session)) -> BadgeDefinitionResponse:
    return BadgeDefinitionResponse(**await badge_service.get_badge(db, slug))


@router.get("/users/me/badges", response_model=UserBadgesResponse)
async def get_my_badges(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> UserBadgesResponse:
    """Earned badges and progress toward the rest."""
    return UserBadgesResponse(**await badge_service.get_badges(db, user_id))


@router.post("/users/me/badges/check", response_model=CheckBadgesResponse)
async def check_my_badges(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_redis_or_none),
) -> CheckBadgesResponse:
    """Award any badge whose threshold is now met; returns only new ones."""
    earned = await badge_service.evaluate(db, redis, user_id)
    return CheckBadgesResponse(newly_earned=[EarnedBadgeResponse(**b) for b in earned])


@router.get("/users/me/streak", response_model=StreakResponse)
async def get_my_streak(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> StreakResponse:
    return StreakResponse(**await get_streak_view(db, user_id))
