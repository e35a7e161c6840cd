"""ORM models for the reading activity engine.

Every table here is owned by the engine except ``users`` and
``user_following``, which mirror identities and follow edges supplied by
the auth and social services.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookpost.db.base import Base, BigIntId, UTCDateTime

SESSION_ACTIVE = "active"
SESSION_ENDED = "ended"


# ---------------------------------------------------------------------------
# Collaborator mirrors
# ---------------------------------------------------------------------------


class User(Base):
    """Reader identity as known to the engine."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class UserFollowing(Base):
    """Follow edge (follower -> following), written by the social service."""

    __tablename__ = "user_following"

    follower_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    following_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------


class ReadingSession(Base):
    """One device-bound reading interval.

    At most one ``active`` row per (user, book, book_type, device); the
    partial unique index is the compare-and-set behind StartSession.
    """

    __tablename__ = "reading_sessions"
    __table_args__ = (
        Index(
            "uq_reading_sessions_active_device",
            "user_id",
            "book_id",
            "book_type",
            "device_id",
            unique=True,
            postgresql_where=text("state = 'active'"),
            sqlite_where=text("state = 'active'"),
        ),
        Index("idx_reading_sessions_user_state", "user_id", "state"),
        Index("idx_reading_sessions_state_heartbeat", "state", "last_heartbeat_at"),
        UniqueConstraint("user_id", "client_session_key", name="reading_sessions_user_client_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    book_id: Mapped[str] = mapped_column(String(64), nullable=False)
    book_type: Mapped[str] = mapped_column(String(16), nullable=False)
    device_id: Mapped[str] = mapped_column(String(128), nullable=False)
    start_position: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_position: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_heartbeat_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default=SESSION_ACTIVE)
    end_reason: Mapped[str | None] = mapped_column(String(16), nullable=True)
    accumulated_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pages_read: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paused_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_client_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    client_session_key: Mapped[str | None] = mapped_column(String(128), nullable=True)


# ---------------------------------------------------------------------------
# Duration aggregates
# ---------------------------------------------------------------------------


class DailyReadingStats(Base):
    """Per-user, per-local-day reading totals. Counters only ever grow."""

    __tablename__ = "daily_reading_stats"

    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    total_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pages_read: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    finished_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class DailyBookActivity(Base):
    """Books touched on a given local day, with the seconds each contributed."""

    __tablename__ = "daily_book_activity"

    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    book_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    book_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class BookReadingTotal(Base):
    """Lifetime totals and last position per user per book."""

    __tablename__ = "book_reading_totals"

    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    book_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    book_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    total_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pages_read: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_position: Mapped[str | None] = mapped_column(Text, nullable=True)
    first_read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class WeeklyReadingTotal(Base):
    """Seconds credited inside a leaderboard window (reference-timezone week)."""

    __tablename__ = "weekly_reading_totals"
    __table_args__ = (Index("idx_weekly_totals_week_seconds", "week_start", "total_seconds"),)

    week_start: Mapped[date] = mapped_column(Date, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_occurred_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Streaks, goals & badges
# ---------------------------------------------------------------------------


class UserStreak(Base):
    """Cached consecutive-qualifying-day streak, one row per user."""

    __tablename__ = "user_streaks"

    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    current_streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_qualifying_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    streak_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class ReadingGoal(Base):
    """Daily reading target chosen by the reader, in minutes."""

    __tablename__ = "reading_goals"

    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    daily_target_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class BadgeDefinition(Base):
    """Badge catalog row, seeded from ``gamification.catalog`` on startup."""

    __tablename__ = "badge_definitions"
    __table_args__ = (Index("idx_badge_definitions_category_level", "category", "level"),)

    slug: Mapped[str] = mapped_column(String(64), primary_key=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    requirement: Mapped[str | None] = mapped_column(Text, nullable=True)
    metric: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold_value: Mapped[int] = mapped_column(BigInteger, nullable=False)
    catalog_version: Mapped[str] = mapped_column(String(16), nullable=False)
    earned_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserBadge(Base):
    """Earned badge fact. UNIQUE(user_id, badge_slug) prevents re-earning."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_slug", name="user_badges_user_id_badge_slug_key"),
        Index("idx_user_badges_user_earned", "user_id", "earned_at"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_slug: Mapped[str] = mapped_column(String(64), ForeignKey("badge_definitions.slug"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    badge: Mapped[BadgeDefinition] = relationship("BadgeDefinition", lazy="joined")


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


class LeaderboardSettlement(Base):
    """Marks a weekly window as settled; its snapshot is frozen from then on."""

    __tablename__ = "leaderboard_settlements"

    week_start: Mapped[date] = mapped_column(Date, primary_key=True)
    window_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    settled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class LeaderboardSnapshot(Base):
    """Immutable ranked entry of a settled window."""

    __tablename__ = "leaderboard_snapshots"
    __table_args__ = (Index("idx_lb_snapshots_week_rank", "week_start", "rank"),)

    week_start: Mapped[date] = mapped_column(Date, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    reading_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    previous_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)


class LeaderboardLike(Base):
    """One like per (liker, target, week). Kept apart from durations."""

    __tablename__ = "leaderboard_likes"
    __table_args__ = (
        UniqueConstraint("user_id", "target_user_id", "week_start", name="leaderboard_likes_user_target_week_key"),
        Index("idx_lb_likes_target_week", "target_user_id", "week_start"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    target_user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
