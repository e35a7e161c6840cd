"""Daily reading goals.

Revision ID: 002_reading_goals
Revises: 001_reading_engine
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_reading_goals"
down_revision: str | None = "001_reading_engine"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS reading_goals (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            daily_target_minutes INTEGER NOT NULL
                CHECK (daily_target_minutes BETWEEN 5 AND 480),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS reading_goals CASCADE")
