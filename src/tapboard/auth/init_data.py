"""
Telegram WebApp init data verification.

The WebApp launch string is a URL-encoded query of ``key=value`` pairs plus a
hex ``hash`` signed by the platform with a key derived from the bot token:

    secret_key = HMAC_SHA256(key=bot_token, msg="WebAppData")
    hash       = hex(HMAC_SHA256(key=secret_key, msg=data_check_string))

``data_check_string`` is every field except ``hash`` and ``signature``,
sorted by key and joined as ``key=value`` lines.

Freshness (``auth_date`` within ``max_age_seconds``) is always enforced.
The signature check is enforced only in strict mode; permissive mode logs a
mismatch and trusts the embedded user, which lets anyone who can produce a
fresh ``auth_date`` and a ``user`` object impersonate any account.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import unquote

import structlog
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from tapboard.errors import AuthError

if TYPE_CHECKING:
    from tapboard.config import Settings

logger = structlog.get_logger()

WEB_APP_DATA = b"WebAppData"
DEFAULT_MAX_AGE_SECONDS = 86_400

# Reserved fields that never enter the data-check string.
_HASH_FIELD = "hash"
_SIGNATURE_FIELD = "signature"

_INT64_MAX = 2**63 - 1


class InitDataUser(BaseModel):
    """The ``user`` JSON object embedded in init data."""

    model_config = ConfigDict(extra="ignore")

    id: StrictInt = Field(..., gt=0, le=_INT64_MAX)
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    language_code: str | None = None
    is_premium: bool | None = None
    photo_url: str | None = None


@dataclass(frozen=True)
class VerifiedIdentity:
    """Identity extracted from init data that passed verification.

    Only ``verify_init_data`` creates these.
    """

    numeric_id: int
    raw_claims: Mapping[str, str]
    auth_date: int
    user: InitDataUser = field(repr=False)


@dataclass(frozen=True)
class ParsedInitData:
    """Decoded init data split into signed fields and the claimed hash."""

    fields: list[tuple[str, str]]
    claimed_hash: str
    signature: str | None


def parse_init_data(init_data: str) -> ParsedInitData:
    """
    Split init data into ordered ``(key, value)`` pairs.

    Values are percent-decoded except ``hash`` and ``signature``, which are
    pulled out and never returned among the signed fields.

    Raises:
        AuthError: ``malformed_token`` if the string has no usable structure.
    """
    if not init_data or not init_data.strip():
        msg = "Init data is empty"
        raise AuthError(msg, AuthError.MALFORMED_TOKEN)

    fields: list[tuple[str, str]] = []
    claimed_hash = ""
    signature: str | None = None

    for part in init_data.split("&"):
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep or not key:
            msg = "Init data segment is not a key=value pair"
            raise AuthError(msg, AuthError.MALFORMED_TOKEN)

        if key == _HASH_FIELD:
            claimed_hash = value
            continue
        if key == _SIGNATURE_FIELD:
            signature = value
            continue

        try:
            decoded = unquote(value, errors="strict")
        except UnicodeDecodeError as e:
            msg = f"Init data field '{key}' is not valid UTF-8"
            raise AuthError(msg, AuthError.MALFORMED_TOKEN) from e
        fields.append((key, decoded))

    if not fields and not claimed_hash:
        msg = "Init data contains no fields"
        raise AuthError(msg, AuthError.MALFORMED_TOKEN)

    return ParsedInitData(fields=fields, claimed_hash=claimed_hash, signature=signature)


def build_data_check_string(fields: list[tuple[str, str]]) -> str:
    """Sort fields by key (UTF-8 byte order, stable) and join as ``key=value`` lines."""
    ordered = sorted(fields, key=lambda kv: kv[0].encode("utf-8"))
    return "\n".join(f"{k}={v}" for k, v in ordered)


def derive_secret_key(bot_token: str) -> bytes:
    """First HMAC stage: the bot token is the key, ``WebAppData`` the message."""
    return hmac.new(bot_token.encode("utf-8"), WEB_APP_DATA, hashlib.sha256).digest()


def compute_hash(data_check_string: str, bot_token: str) -> str:
    """Hex HMAC-SHA256 of the data-check string under the derived secret key."""
    secret_key = derive_secret_key(bot_token)
    return hmac.new(secret_key, data_check_string.encode("utf-8"), hashlib.sha256).hexdigest()


def _parse_auth_date(fields: list[tuple[str, str]]) -> int:
    raw = next((v for k, v in reversed(fields) if k == "auth_date"), "")
    if not raw:
        # Same as an epoch timestamp: always stale.
        return 0
    try:
        return int(raw)
    except ValueError:
        msg = "auth_date is not an integer"
        raise AuthError(msg, AuthError.MALFORMED_TOKEN) from None


def _parse_user(claims: Mapping[str, str]) -> InitDataUser:
    raw = claims.get("user")
    if not raw:
        msg = "Init data has no user"
        raise AuthError(msg, AuthError.NO_IDENTITY)
    try:
        return InitDataUser.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        msg = "Init data user is malformed"
        raise AuthError(msg, AuthError.NO_IDENTITY) from e


def verify_init_data(
    init_data: str,
    bot_token: str,
    *,
    now: float | None = None,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    strict: bool = True,
) -> VerifiedIdentity:
    """
    Verify Telegram WebApp init data and extract the user identity.

    Args:
        init_data: Raw query string from ``Telegram.WebApp.initData``.
        bot_token: Shared secret the platform signed with.
        now: Current time in epoch seconds (defaults to ``time.time()``).
        max_age_seconds: Maximum accepted age of ``auth_date``.
        strict: Reject on signature mismatch instead of only logging it.

    Returns:
        The verified identity.

    Raises:
        AuthError: ``stale_token``, ``signature_mismatch``, ``no_identity``
            or ``malformed_token``.
    """
    parsed = parse_init_data(init_data)

    auth_date = _parse_auth_date(parsed.fields)
    current = int(time.time() if now is None else now)
    age = current - auth_date
    if age < 0 or age > max_age_seconds:
        logger.warning("init_data_stale", auth_date=auth_date, age=age)
        msg = "Expired or invalid auth_date"
        raise AuthError(msg, AuthError.STALE_TOKEN)

    data_check_string = build_data_check_string(parsed.fields)
    calculated = compute_hash(data_check_string, bot_token)
    signature_ok = hmac.compare_digest(
        calculated.encode("ascii"),
        parsed.claimed_hash.encode("utf-8"),
    )

    claims = dict(parsed.fields)
    user = _parse_user(claims)

    if not signature_ok:
        if strict:
            logger.warning("init_data_signature_rejected", telegram_id=user.id, age=age)
            msg = "Init data signature mismatch"
            raise AuthError(msg, AuthError.SIGNATURE_MISMATCH)
        logger.warning(
            "init_data_signature_mismatch",
            telegram_id=user.id,
            age=age,
            init_data_length=len(init_data),
        )

    return VerifiedIdentity(
        numeric_id=user.id,
        raw_claims=claims,
        auth_date=auth_date,
        user=user,
    )


@dataclass(frozen=True)
class InitDataVerifier:
    """Verification parameters bound once at startup."""

    bot_token: str = field(repr=False)
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS
    strict: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> InitDataVerifier:
        """Build a verifier, failing with ConfigError when the bot token is unset."""
        settings.require_secrets()
        return cls(
            bot_token=settings.telegram_bot_token.get_secret_value(),
            max_age_seconds=settings.init_data_max_age_seconds,
            strict=settings.init_data_strict,
        )

    def verify(self, init_data: str, *, now: float | None = None) -> VerifiedIdentity:
        """Verify ``init_data`` with the bound secret and mode."""
        return verify_init_data(
            init_data,
            self.bot_token,
            now=now,
            max_age_seconds=self.max_age_seconds,
            strict=self.strict,
        )
