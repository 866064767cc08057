"""
tests/test_engine.py — Engine, Session Helper + Async Bridge Tests
====================================================================

Schema creation belongs to Alembic; the engine module only connects,
scopes sessions and ships sync work to a thread.
"""

from __future__ import annotations

import time

import pytest
from conftest import run_async
from sqlalchemy import select
from sqlalchemy.orm import Session

from modboard.database import engine as db
from modboard.database.models import OAuthState


class TestCreateEngine:
    def test_missing_url_is_an_error(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            db.create_db_engine()

    def test_sqlite_url_connects(self):
        engine = db.create_db_engine("sqlite://")
        db.ping(engine)

    def test_module_does_not_create_tables(self):
        assert not hasattr(db, "init_db")


class TestGetSession:
    def test_commits_on_success(self, db_engine):
        with db.get_session(db_engine) as session:
            session.add(OAuthState(state="kept"))
        with Session(db_engine) as session:
            assert session.get(OAuthState, "kept") is not None

    def test_rolls_back_on_error(self, db_engine):
        with pytest.raises(ValueError):
            with db.get_session(db_engine) as session:
                session.add(OAuthState(state="discarded"))
                session.flush()
                raise ValueError("boom")
        with Session(db_engine) as session:
            assert session.scalars(select(OAuthState)).all() == []


class TestRunQuery:
    def test_returns_result_from_worker_thread(self):
        result = run_async(db.run_query(1.0, lambda a, b: a + b, 2, b=3))
        assert result == 5

    def test_times_out(self):
        with pytest.raises(TimeoutError):
            run_async(db.run_query(0.05, time.sleep, 0.5))
