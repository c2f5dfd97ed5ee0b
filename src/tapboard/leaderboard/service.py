"""Merge reported runs into leaderboard rows."""

from __future__ import annotations

import re
from datetime import datetime, timezone

import structlog

from tapboard.auth.init_data import VerifiedIdentity
from tapboard.errors import InputError, StoreError
from tapboard.leaderboard.store import LeaderboardRecord, LeaderboardStore

logger = structlog.get_logger()

DISPLAY_NAME_MIN_LENGTH = 4
DISPLAY_NAME_MAX_LENGTH = 15

# Latin and Cyrillic letters (including Ё/ё), digits, underscore and hyphen.
_DISPLAY_NAME_RE = re.compile(
    rf"[A-Za-zА-Яа-яЁё0-9_-]{{{DISPLAY_NAME_MIN_LENGTH},{DISPLAY_NAME_MAX_LENGTH}}}"
)


def validate_display_name(candidate: str | None) -> str | None:
    """Return the trimmed name if acceptable, else None."""
    if not isinstance(candidate, str):
        return None
    name = candidate.strip()
    if _DISPLAY_NAME_RE.fullmatch(name) is None:
        return None
    return name


def merge_record(
    current: LeaderboardRecord | None,
    identity_id: int,
    run_score: int,
    lifetime_score: int,
    display_name: str | None,
    now: datetime,
) -> LeaderboardRecord:
    """
    Compute the row to write from the stored row and a reported run.

    Scores only move up; negative reports count as zero. A valid name
    replaces the stored one, otherwise the stored name is kept.
    """
    best = max(current.best_run_score if current else 0, max(run_score, 0))
    lifetime = max(current.lifetime_score if current else 0, max(lifetime_score, 0))

    name = validate_display_name(display_name)
    if name is None and current is not None:
        name = current.display_name

    return LeaderboardRecord(
        identity_id=identity_id,
        display_name=name,
        best_run_score=best,
        lifetime_score=lifetime,
        updated_at=now,
    )


async def reconcile(
    store: LeaderboardStore,
    identity: VerifiedIdentity | None,
    run_score: int,
    lifetime_score: int,
    display_name: str | None = None,
    *,
    now: datetime | None = None,
) -> LeaderboardRecord:
    """
    Merge a reported run into the player's leaderboard row and return the stored row.

    Replaying the same arguments leaves the stored scores unchanged.

    Raises:
        InputError: If the identity carries no Telegram id.
        StoreError: If the store cannot be read or written, or the row
            cannot be read back after the write.
    """
    if identity is None or not identity.numeric_id:
        msg = "No Telegram user"
        raise InputError(msg, "identity_missing")

    if now is None:
        now = datetime.now(timezone.utc)

    identity_id = identity.numeric_id
    current = await store.fetch(identity_id)
    candidate = merge_record(current, identity_id, run_score, lifetime_score, display_name, now)

    logger.info(
        "leaderboard_upsert",
        telegram_id=identity_id,
        created=current is None,
        best_run_score=candidate.best_run_score,
        lifetime_score=candidate.lifetime_score,
        name_changed=current is None or candidate.display_name != current.display_name,
    )

    stored = await store.upsert(candidate)
    if stored is None:
        # Write acknowledged without the row: read it back.
        stored = await store.fetch(identity_id)
    if stored is None:
        msg = f"Leaderboard row for {identity_id} missing after write"
        raise StoreError(msg)

    logger.info(
        "leaderboard_reconciled",
        telegram_id=identity_id,
        best_run_score=stored.best_run_score,
        lifetime_score=stored.lifetime_score,
    )
    return stored
