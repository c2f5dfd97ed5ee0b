"""Structured logging configuration with structlog."""

import logging
from typing import Any

import structlog

from tapboard.config import Settings

# Event keys whose values could carry the bot token or a replayable init data string.
REDACTED_KEYS = frozenset(
    {
        "init_data",
        "initData",
        "bot_token",
        "telegram_bot_token",
        "secret_key",
        "data_check_string",
    }
)
REDACTED = "[redacted]"


def redact_secrets(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:  # noqa: ANN401
    """Replace secret-bearing values before any renderer sees them."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output, with secrets redacted."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            redact_secrets,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
