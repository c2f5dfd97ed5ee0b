"""FastAPI authentication dependencies."""

from __future__ import annotations

from fastapi import Depends

from tapboard.auth.init_data import InitDataVerifier
from tapboard.config import Settings, get_settings


def get_verifier(settings: Settings = Depends(get_settings)) -> InitDataVerifier:  # noqa: B008
    """
    Build the init data verifier from application settings.

    Raises ConfigError (rendered as 500) when the bot token is not configured.
    """
    return InitDataVerifier.from_settings(settings)
