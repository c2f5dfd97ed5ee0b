"""Leaderboard table — one row per Telegram user.

Creates the leaderboard table keyed by telegram_id with best-run and
lifetime scores, and an index for the top list.

Revision ID: 001_leaderboard
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_leaderboard"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard (
            telegram_id BIGINT PRIMARY KEY,
            username VARCHAR(15),
            max_score BIGINT NOT NULL DEFAULT 0,
            total_score BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT leaderboard_max_score_nonneg CHECK (max_score >= 0),
            CONSTRAINT leaderboard_total_score_nonneg CHECK (total_score >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_leaderboard_max_score
        ON leaderboard(max_score DESC)
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_leaderboard_max_score")
    op.execute("DROP TABLE IF EXISTS leaderboard")
