"""Reading engine schema.

Creates the user mirror tables, reading sessions, duration aggregates,
streaks, badge catalog and earned badges, and the weekly leaderboard
settlement, snapshot and like tables.

Revision ID: 001_reading_engine
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_reading_engine"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Collaborator mirrors ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            avatar_url TEXT,
            timezone VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_following (
            follower_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            following_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ,
            PRIMARY KEY (follower_id, following_id)
        )
    """)

    # --- Reading Sessions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS reading_sessions (
            id VARCHAR(36) PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            book_id VARCHAR(64) NOT NULL,
            book_type VARCHAR(16) NOT NULL,
            device_id VARCHAR(128) NOT NULL,
            start_position TEXT,
            last_position TEXT,
            started_at TIMESTAMPTZ NOT NULL,
            last_heartbeat_at TIMESTAMPTZ NOT NULL,
            ended_at TIMESTAMPTZ,
            state VARCHAR(16) NOT NULL DEFAULT 'active',
            end_reason VARCHAR(16),
            accumulated_seconds INTEGER NOT NULL DEFAULT 0,
            pages_read INTEGER NOT NULL DEFAULT 0,
            is_paused BOOLEAN NOT NULL DEFAULT false,
            paused_at TIMESTAMPTZ,
            last_client_sent_at TIMESTAMPTZ,
            client_session_key VARCHAR(128),
            CONSTRAINT reading_sessions_user_client_key UNIQUE (user_id, client_session_key)
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_reading_sessions_active_device
        ON reading_sessions(user_id, book_id, book_type, device_id)
        WHERE state = 'active'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_reading_sessions_user_state
        ON reading_sessions(user_id, state)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_reading_sessions_state_heartbeat
        ON reading_sessions(state, last_heartbeat_at)
    """)

    # --- Duration Aggregates ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_reading_stats (
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            day DATE NOT NULL,
            total_seconds INTEGER NOT NULL DEFAULT 0,
            pages_read INTEGER NOT NULL DEFAULT 0,
            finished_count INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ,
            PRIMARY KEY (user_id, day)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_book_activity (
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            day DATE NOT NULL,
            book_id VARCHAR(64) NOT NULL,
            book_type VARCHAR(16) NOT NULL,
            seconds INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (user_id, day, book_id, book_type)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS book_reading_totals (
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            book_id VARCHAR(64) NOT NULL,
            book_type VARCHAR(16) NOT NULL,
            total_seconds INTEGER NOT NULL DEFAULT 0,
            pages_read INTEGER NOT NULL DEFAULT 0,
            last_position TEXT,
            first_read_at TIMESTAMPTZ,
            last_read_at TIMESTAMPTZ,
            finished_at TIMESTAMPTZ,
            PRIMARY KEY (user_id, book_id, book_type)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS weekly_reading_totals (
            week_start DATE NOT NULL,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            total_seconds INTEGER NOT NULL DEFAULT 0,
            last_occurred_at TIMESTAMPTZ,
            PRIMARY KEY (week_start, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_weekly_totals_week_seconds
        ON weekly_reading_totals(week_start, total_seconds)
    """)

    # --- Streaks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_streaks (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            current_streak_days INTEGER NOT NULL DEFAULT 0,
            longest_streak_days INTEGER NOT NULL DEFAULT 0,
            last_qualifying_date DATE,
            streak_start_date DATE,
            updated_at TIMESTAMPTZ
        )
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            slug VARCHAR(64) PRIMARY KEY,
            category VARCHAR(32) NOT NULL,
            level INTEGER NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            requirement TEXT,
            metric VARCHAR(32) NOT NULL,
            threshold_value BIGINT NOT NULL,
            catalog_version VARCHAR(16) NOT NULL,
            earned_count INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_badge_definitions_category_level
        ON badge_definitions(category, level)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_slug VARCHAR(64) NOT NULL REFERENCES badge_definitions(slug),
            earned_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT user_badges_user_id_badge_slug_key UNIQUE (user_id, badge_slug)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_badges_user_earned
        ON user_badges(user_id, earned_at)
    """)

    # --- Leaderboard ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_settlements (
            week_start DATE PRIMARY KEY,
            window_end TIMESTAMPTZ NOT NULL,
            settled_at TIMESTAMPTZ NOT NULL,
            participant_count INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_snapshots (
            week_start DATE NOT NULL,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            rank INTEGER NOT NULL,
            duration_seconds INTEGER NOT NULL,
            reading_days INTEGER NOT NULL DEFAULT 0,
            previous_rank INTEGER,
            PRIMARY KEY (week_start, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_lb_snapshots_week_rank
        ON leaderboard_snapshots(week_start, rank)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_likes (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            target_user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            week_start DATE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT leaderboard_likes_user_target_week_key UNIQUE (user_id, target_user_id, week_start)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_lb_likes_target_week
        ON leaderboard_likes(target_user_id, week_start)
    """)


def downgrade() -> None:
    for table in (
        "leaderboard_likes",
        "leaderboard_snapshots",
        "leaderboard_settlements",
        "user_badges",
        "badge_definitions",
        "user_streaks",
        "weekly_reading_totals",
        "book_reading_totals",
        "daily_book_activity",
        "daily_reading_stats",
        "reading_sessions",
        "user_following",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
