"""Pydantic request/response models for reading session endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

BookType = Literal["ebook", "magazine"]


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


# --- Requests ---


class StartSessionRequest(_Request):
    book_id: str = Field(..., min_length=1, max_length=64)
    book_type: BookType
    device_id: str = Field(..., min_length=1, max_length=128)
    position: str | None = Field(None, max_length=4096)


class HeartbeatRequest(_Request):
    position: str | None = Field(None, max_length=4096)
    pages_read: int = Field(0, ge=0, le=10_000)
    # Client clock at send time; retries resend the first value.
    sent_at: datetime | None = None
    # Advisory only, never credited.
    reported_duration_seconds: int | None = Field(None, ge=0)


class EndSessionRequest(_Request):
    position: str | None = Field(None, max_length=4096)
    pages_read: int = Field(0, ge=0, le=10_000)
    finished: bool = False
    sent_at: datetime | None = None
    reported_duration_seconds: int | None = Field(None, ge=0)


class OfflineSessionRequest(_Request):
    book_id: str = Field(..., min_length=1, max_length=64)
    book_type: BookType
    device_id: str = Field(..., min_length=1, max_length=128)
    started_at: datetime
    ended_at: datetime
    start_position: str | None = Field(None, max_length=4096)
    end_position: str | None = Field(None, max_length=4096)
    pages_read: int = Field(0, ge=0, le=10_000)
    finished: bool = False
    client_session_key: str = Field(..., min_length=1, max_length=128)


# --- Responses ---


class StartSessionResponse(BaseModel):
    session_id: str
    started_at: datetime


class HeartbeatResponse(BaseModel):
    session_id: str
    duration_seconds: int
    today_duration_seconds: int
    total_book_duration_seconds: int
    is_paused: bool = False


class MilestoneResponse(BaseModel):
    slug: str
    category: str
    level: int
    name: str
    description: str | None = None
    requirement: str | None = None
    earned_at: datetime | None = None


class EndSessionResponse(BaseModel):
    session_id: str
    total_duration_seconds: int
    today_duration_seconds: int
    total_book_duration_seconds: int
    milestones_achieved: list[MilestoneResponse] = []


class ActiveSessionResponse(BaseModel):
    session_id: str
    book_id: str
    book_type: str
    device_id: str
    position: str | None = None
    started_at: datetime
    last_heartbeat_at: datetime
    duration_seconds: int
    is_paused: bool


class ActiveSessionEnvelope(BaseModel):
    session: ActiveSessionResponse | None = None


class OfflineSessionResponse(BaseModel):
    session_id: str
    credited_seconds: int
    duplicate: bool = False
    milestones_achieved: list[MilestoneResponse] = []
