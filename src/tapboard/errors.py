"""Error taxonomy shared by the verifier, the reconciler and the HTTP layer.

Every rejection carries an HTTP status and a machine-readable ``reason`` so
the exception handler can render ``{"error": ..., "reason": ...}`` without
inspecting the exception type.
"""

from __future__ import annotations


class TapboardError(Exception):
    """Base class for all expected failures."""

    status_code: int = 500
    default_reason: str = "internal_error"

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason


class InputError(TapboardError):
    """Missing or malformed request fields."""

    status_code = 400
    default_reason = "invalid_input"


class AuthError(TapboardError):
    """Init data is stale, unsigned, forged or carries no identity."""

    status_code = 401
    default_reason = "unauthorized"

    STALE_TOKEN = "stale_token"
    NO_IDENTITY = "no_identity"
    SIGNATURE_MISMATCH = "signature_mismatch"
    MALFORMED_TOKEN = "malformed_token"


class ConfigError(TapboardError):
    """A required secret or endpoint is not configured."""

    status_code = 500
    default_reason = "server_misconfigured"


class StoreError(TapboardError):
    """The leaderboard store could not be read or written."""

    status_code = 500
    default_reason = "store_unavailable"
