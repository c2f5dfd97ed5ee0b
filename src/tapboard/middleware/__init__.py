"""Middleware registration."""

from fastapi import FastAPI

from tapboard.config import Settings
from tapboard.middleware.cors import setup_cors
from tapboard.middleware.error_handler import setup_error_handlers
from tapboard.middleware.logging import setup_logging
from tapboard.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    FastAPI/Starlette executes middleware in reverse-add order (last added = outermost).
    CORS must be outermost so error responses also carry the CORS headers.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)  # added last → outermost
