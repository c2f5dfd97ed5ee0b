"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tapboard.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the WebApp (served from any origin inside Telegram) to call the API."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
        expose_headers=["X-Request-Id"],
    )
