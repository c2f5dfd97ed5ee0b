"""Leaderboard endpoints — score submission from the WebApp and the public top list."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tapboard.auth.dependencies import get_verifier
from tapboard.auth.init_data import InitDataVerifier
from tapboard.config import Settings, get_settings
from tapboard.database import get_session
from tapboard.leaderboard.schemas import (
    ErrorResponse,
    LeaderboardRecordResponse,
    LeaderboardResponse,
    ScoreSubmission,
    ScoreSubmissionResponse,
)
from tapboard.leaderboard.service import reconcile
from tapboard.leaderboard.store import SqlLeaderboardStore

logger = structlog.get_logger()

router = APIRouter(tags=["Leaderboard"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def get_store(
    db: AsyncSession = Depends(get_session),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> SqlLeaderboardStore:
    """Leaderboard store bound to the request's session."""
    return SqlLeaderboardStore(db, timeout_seconds=settings.store_timeout_seconds)


@router.options("/update_scores", include_in_schema=False)
async def update_scores_preflight() -> Response:
    """Answer bare OPTIONS requests; CORS preflights are handled by the middleware."""
    return Response(status_code=200)


@router.post("/update_scores", response_model=ScoreSubmissionResponse, responses=_ERROR_RESPONSES)
async def update_scores(
    body: ScoreSubmission,
    verifier: InitDataVerifier = Depends(get_verifier),  # noqa: B008
    store: SqlLeaderboardStore = Depends(get_store),  # noqa: B008
) -> ScoreSubmissionResponse:
    """Verify the WebApp init data and merge the reported run into the player's row."""
    logger.info(
        "update_scores_received",
        run_score=body.run_score,
        total_score=body.total_score,
        has_display_name=body.display_name is not None,
    )
    identity = verifier.verify(body.init_data)
    record = await reconcile(
        store,
        identity,
        run_score=body.run_score,
        lifetime_score=body.total_score,
        display_name=body.display_name,
    )
    return ScoreSubmissionResponse(ok=True, me=LeaderboardRecordResponse.from_record(record))


@router.get("/leaderboard", response_model=LeaderboardResponse, responses={500: {"model": ErrorResponse}})
async def leaderboard(
    limit: int | None = Query(None, ge=1, le=100),
    store: SqlLeaderboardStore = Depends(get_store),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> LeaderboardResponse:
    """Highest best-run scores, ties broken by lifetime score."""
    records = await store.top(limit or settings.leaderboard_default_limit)
    return LeaderboardResponse(entries=[LeaderboardRecordResponse.from_record(r) for r in records])
