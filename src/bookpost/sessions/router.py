"""Reading session API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.auth.dependencies import get_current_user_id
from bookpost.database import get_session
from bookpost.redis_client import get_redis_or_none
from bookpost.sessions import service
from bookpost.sessions.schemas import (
    ActiveSessionEnvelope,
    ActiveSessionResponse,
    EndSessionRequest,
    EndSessionResponse,
    HeartbeatRequest,
    HeartbeatResponse,
    OfflineSessionRequest,
    OfflineSessionResponse,
    StartSessionRequest,
    StartSessionResponse,
)

router = APIRouter(prefix="/api/v1/reading/sessions", tags=["Reading Sessions"])


@router.post("/start", response_model=StartSessionResponse)
async def start_session(
    body: StartSessionRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> StartSessionResponse:
    """Open a reading session on this device."""
    result = await service.start_session(
        db, user_id, body.book_id, body.book_type, body.device_id, position=body.position,
    )
    return StartSessionResponse(**result)


@router.get("/active", response_model=ActiveSessionEnvelope)
async def get_active_session(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ActiveSessionEnvelope:
    """Most recently heartbeated active session across devices, for resume-reading."""
    session = await service.get_active_session(db, user_id)
    return ActiveSessionEnvelope(session=ActiveSessionResponse(**session) if session else None)


@router.post("/offline", response_model=OfflineSessionResponse)
async def sync_offline_session(
    body: OfflineSessionRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_redis_or_none),
) -> OfflineSessionResponse:
    """Record a session that was read without connectivity."""
    result = await service.sync_offline_session(
        db,
        redis,
        user_id,
        book_id=body.book_id,
        book_type=body.book_type,
        device_id=body.device_id,
        started_at=body.started_at,
        ended_at=body.ended_at,
        client_session_key=body.client_session_key,
        start_position=body.start_position,
        end_position=body.end_position,
        pages_read=body.pages_read,
        finished=body.finished,
    )
    return OfflineSessionResponse(**result)


@router.post("/{session_id}/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(
    session_id: str,
    body: HeartbeatRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> HeartbeatResponse:
    """Advance a session's duration from server time."""
    result = await service.heartbeat(
        db, user_id, session_id, position=body.position, pages_read=body.pages_read, sent_at=body.sent_at,
    )
    return HeartbeatResponse(**result)


@router.post("/{session_id}/pause", response_model=HeartbeatResponse)
async def pause_session(
    session_id: str,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> HeartbeatResponse:
    result = await service.pause_session(db, user_id, session_id)
    return HeartbeatResponse(**result)


@router.post("/{session_id}/resume", response_model=HeartbeatResponse)
async def resume_session(
    session_id: str,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> HeartbeatResponse:
    result = await service.resume_session(db, user_id, session_id)
    return HeartbeatResponse(**result)


@router.post("/{session_id}/end", response_model=EndSessionResponse)
async def end_session(
    session_id: str,
    body: EndSessionRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_redis_or_none),
) -> EndSessionResponse:
    """End a session; the response lists badges earned by it."""
    result = await service.end_session(
        db,
        redis,
        user_id,
        session_id,
        position=body.position,
        pages_read=body.pages_read,
        finished=body.finished,
        sent_at=body.sent_at,
    )
    return EndSessionResponse(**result)
