"""Pydantic models for daily goal endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from bookpost.goals.service import MAX_TARGET_MINUTES, MIN_TARGET_MINUTES


class SetDailyGoalRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_minutes: int = Field(..., ge=MIN_TARGET_MINUTES, le=MAX_TARGET_MINUTES)


class DailyGoal(BaseModel):
    target_minutes: int
    current_minutes: int
    progress: int
    is_completed: bool


class GoalStreak(BaseModel):
    current: int
    max: int


class DailyGoalResponse(BaseModel):
    has_goal: bool
    date: str
    goal: DailyGoal
    streak: GoalStreak


class SetDailyGoalResponse(BaseModel):
    target_minutes: int
    message: str
