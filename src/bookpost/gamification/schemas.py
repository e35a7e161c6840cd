"""Pydantic response models for badge and streak endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


# --- Badge ---


class BadgeDefinitionResponse(BaseModel):
    slug: str
    category: str
    level: int
    name: str
    description: str | None = None
    requirement: str | None = None
    metric: str
    threshold: int
    earned_count: int = 0


class EarnedBadgeResponse(BadgeDefinitionResponse):
    earned_at: datetime


class BadgeProgress(BaseModel):
    current: int
    target: int
    percentage: float
    remaining: str


class InProgressBadgeResponse(BaseModel):
    badge: BadgeDefinitionResponse
    progress: BadgeProgress


class CategorySummary(BaseModel):
    earned: int
    total: int


class UserBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    in_progress: list[InProgressBadgeResponse]
    categories: dict[str, CategorySummary]


class AllBadgesResponse(BaseModel):
    catalog_version: str
    categories: dict[str, list[BadgeDefinitionResponse]]


class CheckBadgesResponse(BaseModel):
    newly_earned: list[EarnedBadgeResponse]


# --- Streak ---


class StreakResponse(BaseModel):
    current_streak_days: int
    stored_streak_days: int
    longest_streak_days: int
    last_qualifying_date: date | None = None
    streak_start_date: date | None = None
    qualifying_minimum_seconds: int
    today: date
