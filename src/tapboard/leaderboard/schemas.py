"""Request/response schemas for leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from tapboard.leaderboard.store import LeaderboardRecord

_INT64_MAX = 2**63 - 1


class ScoreSubmission(BaseModel):
    """Score report sent by the WebApp after a run."""

    model_config = ConfigDict(populate_by_name=True)

    init_data: str = Field(..., alias="initData", min_length=1)
    run_score: StrictInt = Field(0, alias="runScore", ge=-_INT64_MAX, le=_INT64_MAX)
    total_score: StrictInt = Field(0, alias="totalScore", ge=-_INT64_MAX, le=_INT64_MAX)
    display_name: str | None = Field(None, alias="displayName", max_length=256)


class LeaderboardRecordResponse(BaseModel):
    """A persisted leaderboard row."""

    identity_id: int
    display_name: str | None = None
    best_run_score: int
    lifetime_score: int
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_record(cls, record: LeaderboardRecord) -> LeaderboardRecordResponse:
        return cls.model_validate(record)


class ScoreSubmissionResponse(BaseModel):
    """Successful submission: the authoritative row after the write."""

    ok: bool = True
    me: LeaderboardRecordResponse


class LeaderboardResponse(BaseModel):
    """Top of the leaderboard."""

    entries: list[LeaderboardRecordResponse]


class ErrorResponse(BaseModel):
    """Error body for every rejected request."""

    error: str
    reason: str
