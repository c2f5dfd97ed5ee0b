"""Shared test fixtures."""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from collections.abc import AsyncGenerator
from typing import Any
from urllib.parse import quote

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

os.environ["TAPBOARD_TELEGRAM_BOT_TOKEN"] = "123456:TEST-bot-token"
os.environ["TAPBOARD_LOG_FORMAT"] = "console"

from tapboard.config import get_settings  # noqa: E402
from tapboard.database import close_db, get_engine, get_session, init_db  # noqa: E402
from tapboard.db import models  # noqa: E402, F401
from tapboard.db.base import Base  # noqa: E402
from tapboard.main import create_app  # noqa: E402

get_settings.cache_clear()

BOT_TOKEN = os.environ["TAPBOARD_TELEGRAM_BOT_TOKEN"]


def sign_fields(fields: list[tuple[str, str]], bot_token: str = BOT_TOKEN) -> str:
    """Independent implementation of the WebApp signing scheme for test tokens."""
    secret_key = hmac.new(bot_token.encode(), b"WebAppData", hashlib.sha256).digest()
    check = "\n".join(f"{k}={v}" for k, v in sorted(fields))
    return hmac.new(secret_key, check.encode(), hashlib.sha256).hexdigest()


def make_init_data(
    user_id: int | None = 42,
    *,
    auth_date: int | None = None,
    user: dict[str, Any] | None = None,
    extra: dict[str, str] | None = None,
    bot_token: str = BOT_TOKEN,
    hash_override: str | None = None,
    signature: str | None = None,
) -> str:
    """Build a URL-encoded init data string signed with ``bot_token``."""
    fields: list[tuple[str, str]] = [
        ("auth_date", str(int(time.time()) if auth_date is None else auth_date)),
        ("query_id", "AAHdF6IQAAAAAN0XohDhrOrc"),
    ]
    if user is None and user_id is not None:
        user = {"id": user_id, "first_name": "Test", "username": "tester", "language_code": "en"}
    if user is not None:
        fields.append(("user", json.dumps(user, separators=(",", ":"), ensure_ascii=False)))
    if extra:
        fields.extend(extra.items())

    digest = hash_override if hash_override is not None else sign_fields(fields, bot_token)
    parts = [f"{k}={quote(v, safe='')}" for k, v in fields]
    if signature is not None:
        parts.append(f"signature={signature}")
    parts.append(f"hash={digest}")
    return "&".join(parts)


async def _create_schema() -> None:
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
def database_url(tmp_path) -> str:
    """Per-test SQLite database file."""
    return f"sqlite+aiosqlite:///{tmp_path / 'tapboard.db'}"


@pytest_asyncio.fixture
async def db_session(database_url: str) -> AsyncGenerator[AsyncSession, None]:
    """A session on a fresh database with the schema created."""
    await init_db(database_url)
    await _create_schema()
    sessions = get_session()
    session = await anext(sessions)
    yield session
    await sessions.aclose()
    await close_db()


@pytest_asyncio.fixture
async def app(database_url: str):
    """Application wired to a fresh database (lifespan is not run by ASGITransport)."""
    get_settings.cache_clear()
    application = create_app()
    await init_db(database_url)
    await _create_schema()
    yield application
    await close_db()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
