"""Pydantic response models for reading statistics endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class TodayDurationResponse(BaseModel):
    date: str
    duration_seconds: int
    formatted: str


class MilestoneEntry(BaseModel):
    slug: str
    category: str
    level: int
    name: str
    description: str | None = None
    requirement: str | None = None
    earned_at: datetime


class MilestonesResponse(BaseModel):
    milestones: list[MilestoneEntry]
    total: int
