"""ORM models.

Column names follow the deployed ``leaderboard`` table so the service can
run against an existing database.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from tapboard.db.base import Base


class LeaderboardEntry(Base):
    """One row per Telegram user: best single run and lifetime total."""

    __tablename__ = "leaderboard"
    __table_args__ = (
        CheckConstraint("max_score >= 0", name="leaderboard_max_score_nonneg"),
        CheckConstraint("total_score >= 0", name="leaderboard_total_score_nonneg"),
    )

    telegram_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str | None] = mapped_column(String(15), nullable=True)
    max_score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


Index("idx_leaderboard_max_score", LeaderboardEntry.max_score.desc())
