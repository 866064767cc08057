"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os

# ---------------------------------------------------------------------------
# Mandatory settings must exist before anything imports modboard.api.main,
# which loads the configuration at import time.
# ---------------------------------------------------------------------------
_TEST_SESSION_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("DISCORD_CLIENT_ID", "111111111111111111")
os.environ.setdefault("DISCORD_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SESSION_SECRET", _TEST_SESSION_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from modboard.database.models import Base  # noqa: E402

GUILD_ID = "123456789012345678"
USER_ID = "234567890123456789"

_bigint_sqlite_registered = False


def _register_bigint_sqlite_compat():
    """Map BigInteger → INTEGER on SQLite so autoincrement works (idempotent)."""
    global _bigint_sqlite_registered
    if _bigint_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _bigint_sqlite_registered = True


_register_bigint_sqlite_compat()


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all dashboard tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session for seeding rows; callers commit what they add."""
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def client(db_engine: Engine):
    """FastAPI TestClient bound to the in-memory store, lifespan included."""
    from fastapi.testclient import TestClient

    from modboard.api.deps import get_engine, get_session_engine
    from modboard.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_session_engine] = lambda: db_engine
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()


def make_profile(user_id: str = USER_ID, username: str = "FixtureMod", guilds=None):
    from modboard.schemas import IdentityProfile

    return IdentityProfile(
        id=user_id,
        username=username,
        discriminator="0",
        guilds=guilds if guilds is not None else [
            {"id": GUILD_ID, "name": "Fixture Guild", "owner": True, "permissions": "8"}
        ],
    )


def login(client, db_engine: Engine, profile=None, **extra) -> str:
    """Create a signed-in session and put its cookie on *client*.

    Returns the server-side session token.
    """
    from modboard.api.deps import SESSION_COOKIE, encode_session_cookie, get_config
    from modboard.services.session_store import SessionStore

    cfg = get_config()
    profile = profile or make_profile()
    store = SessionStore(db_engine, cfg.session_ttl_seconds)
    token = store.create({"user": profile.model_dump(mode="json"), **extra})
    client.cookies.set(SESSION_COOKIE, encode_session_cookie(token, cfg))
    return token


@pytest.fixture
def auth_client(client, db_engine):
    """A TestClient already carrying a signed-in session cookie."""
    login(client, db_engine)
    return client
