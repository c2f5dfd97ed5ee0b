"""Leaderboard store with point reads and an atomic monotonic upsert.

The upsert is one ``INSERT ... ON CONFLICT DO UPDATE`` that keeps the
greater of the stored and submitted scores and never clears a stored name,
so concurrent writers for the same user cannot lower a persisted maximum.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, TypeVar

import structlog
from sqlalchemy import Row, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tapboard.db.models import LeaderboardEntry
from tapboard.errors import StoreError

logger = structlog.get_logger()

T = TypeVar("T")

_COLUMNS = (
    LeaderboardEntry.telegram_id,
    LeaderboardEntry.username,
    LeaderboardEntry.max_score,
    LeaderboardEntry.total_score,
    LeaderboardEntry.updated_at,
)


@dataclass(frozen=True)
class LeaderboardRecord:
    """Persisted per-user best-score aggregate."""

    identity_id: int
    display_name: str | None
    best_run_score: int
    lifetime_score: int
    updated_at: datetime | None


class LeaderboardStore(Protocol):
    """Keyed-record store the reconciler talks to."""

    async def fetch(self, identity_id: int) -> LeaderboardRecord | None:
        """Point read by identity id."""
        ...

    async def upsert(self, candidate: LeaderboardRecord) -> LeaderboardRecord | None:
        """Insert or merge ``candidate``; return the stored row if the store reports it."""
        ...

    async def top(self, limit: int) -> list[LeaderboardRecord]:
        """Highest best-run scores first."""
        ...


def _to_record(row: Row[Any]) -> LeaderboardRecord:
    return LeaderboardRecord(
        identity_id=row.telegram_id,
        display_name=row.username,
        best_run_score=row.max_score,
        lifetime_score=row.total_score,
        updated_at=row.updated_at,
    )


class SqlLeaderboardStore:
    """LeaderboardStore backed by an async SQLAlchemy session (PostgreSQL or SQLite)."""

    def __init__(self, session: AsyncSession, timeout_seconds: float = 5.0) -> None:
        self.session = session
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Run a store call under the deadline, translating failures to StoreError."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.error("leaderboard_store_failed", operation=operation, error=str(e) or type(e).__name__)
            msg = f"Leaderboard {operation} failed: {str(e) or type(e).__name__}"
            raise StoreError(msg) from e

    def _insert(self) -> tuple[Any, Any]:
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(LeaderboardEntry), func.greatest
        if dialect == "sqlite":
            # SQLite's two-argument max() is the scalar greatest.
            return sqlite_insert(LeaderboardEntry), func.max
        msg = f"Unsupported leaderboard store dialect: {dialect}"
        raise StoreError(msg)

    async def fetch(self, identity_id: int) -> LeaderboardRecord | None:
        """Point read by Telegram id."""
        result = await self._bounded(
            "read",
            self.session.execute(select(*_COLUMNS).where(LeaderboardEntry.telegram_id == identity_id)),
        )
        row = result.one_or_none()
        return _to_record(row) if row is not None else None

    async def upsert(self, candidate: LeaderboardRecord) -> LeaderboardRecord | None:
        """Merge ``candidate`` into the stored row in a single statement and commit."""
        insert, greatest = self._insert()
        stmt = insert.values(
            telegram_id=candidate.identity_id,
            username=candidate.display_name,
            max_score=candidate.best_run_score,
            total_score=candidate.lifetime_score,
            updated_at=candidate.updated_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["telegram_id"],
            set_={
                "max_score": greatest(LeaderboardEntry.max_score, stmt.excluded.max_score),
                "total_score": greatest(LeaderboardEntry.total_score, stmt.excluded.total_score),
                "username": func.coalesce(stmt.excluded.username, LeaderboardEntry.username),
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(*_COLUMNS)

        async def _write() -> Row[Any] | None:
            result = await self.session.execute(stmt)
            row = result.one_or_none()
            await self.session.commit()
            return row

        try:
            row = await self._bounded("write", _write())
        except StoreError:
            await self.session.rollback()
            raise
        return _to_record(row) if row is not None else None

    async def top(self, limit: int) -> list[LeaderboardRecord]:
        """Top ``limit`` rows by best run, ties broken by lifetime score."""
        stmt = (
            select(*_COLUMNS)
            .order_by(
                LeaderboardEntry.max_score.desc(),
                LeaderboardEntry.total_score.desc(),
                LeaderboardEntry.telegram_id.asc(),
            )
            .limit(limit)
        )
        result = await self._bounded("read", self.session.execute(stmt))
        return [_to_record(row) for row in result.all()]
