"""
tests/test_session_store.py — Durable Session Store + Cookie Codec Tests
==========================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest
from sqlalchemy.orm import Session

from modboard.api.deps import (
    COOKIE_ALGORITHM,
    decode_session_cookie,
    encode_session_cookie,
    get_config,
)
from modboard.database.models import DashboardSession
from modboard.services.session_store import SessionStore


@pytest.fixture
def store(db_engine):
    return SessionStore(db_engine, ttl_seconds=3600)


def _expire(db_engine, token: str) -> None:
    with Session(db_engine) as session:
        row = session.get(DashboardSession, token)
        row.expires_at = datetime.now(UTC) - timedelta(seconds=1)
        session.commit()


class TestSessionStore:
    def test_create_and_get(self, store):
        token = store.create({"user": {"id": "1"}})
        assert store.get(token) == {"user": {"id": "1"}}

    def test_tokens_are_unique(self, store):
        assert store.create() != store.create()

    def test_unknown_token(self, store):
        assert store.get("nope") is None

    def test_save_replaces_data(self, store):
        token = store.create({"a": 1})
        assert store.save(token, {"b": 2}) is True
        assert store.get(token) == {"b": 2}

    def test_save_unknown_token(self, store):
        assert store.save("nope", {"b": 2}) is False

    def test_destroy_is_idempotent(self, store):
        token = store.create({"a": 1})
        store.destroy(token)
        store.destroy(token)
        assert store.get(token) is None

    def test_expired_session_is_gone(self, db_engine, store):
        token = store.create({"a": 1})
        _expire(db_engine, token)
        assert store.get(token) is None
        with Session(db_engine) as session:
            assert session.get(DashboardSession, token) is None

    def test_save_refuses_expired(self, db_engine, store):
        token = store.create({"a": 1})
        _expire(db_engine, token)
        assert store.save(token, {"b": 2}) is False

    def test_purge_expired(self, db_engine, store):
        stale = store.create({"a": 1})
        fresh = store.create({"b": 2})
        _expire(db_engine, stale)
        assert store.purge_expired() == 1
        assert store.get(fresh) == {"b": 2}


class TestSessionCookie:
    def test_round_trip(self):
        cfg = get_config()
        assert decode_session_cookie(encode_session_cookie("tok", cfg), cfg) == "tok"

    def test_tampered_cookie_rejected(self):
        cfg = get_config()
        forged = jwt.encode({"sid": "tok"}, "another-secret-" + "y" * 40, algorithm=COOKIE_ALGORITHM)
        assert decode_session_cookie(forged, cfg) is None

    def test_expired_cookie_rejected(self):
        cfg = get_config()
        stale = jwt.encode(
            {"sid": "tok", "exp": datetime.now(UTC) - timedelta(minutes=1)},
            cfg.session_secret,
            algorithm=COOKIE_ALGORITHM,
        )
        assert decode_session_cookie(stale, cfg) is None

    def test_garbage_rejected(self):
        assert decode_session_cookie("not-a-jwt", get_config()) is None
