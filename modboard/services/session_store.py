"""
modboard.services.session_store — Durable Browser Sessions
===========================================================

Server-side session state keyed by an opaque token, stored in the
``dashboard_sessions`` table with an absolute expiry.  The browser holds
only a signed cookie that names the token (see :mod:`modboard.api.deps`).

Concurrency safety is the database's: every call is one short
transaction, and expired rows are pruned lazily on create/read.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, delete, select

from modboard.database.engine import get_session
from modboard.database.models import DashboardSession
from modboard.engine.derivations import as_utc

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


class SessionStore:
    """TTL-bounded key/value store for session payloads."""

    def __init__(self, engine: Engine, ttl_seconds: int) -> None:
        self.engine = engine
        self.ttl_seconds = ttl_seconds

    def _expiry(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.ttl_seconds)

    def create(self, data: dict[str, Any] | None = None) -> str:
        """Persist *data* under a fresh token and return the token."""
        now = datetime.now(UTC)
        token = secrets.token_urlsafe(TOKEN_BYTES)
        with get_session(self.engine) as session:
            session.execute(
                delete(DashboardSession).where(DashboardSession.expires_at < now)
            )
            session.add(
                DashboardSession(
                    token=token,
                    data=dict(data or {}),
                    created_at=now,
                    expires_at=self._expiry(now),
                )
            )
        logger.debug("Session created (ttl=%ss)", self.ttl_seconds)
        return token

    def get(self, token: str) -> dict[str, Any] | None:
        """Return the payload for *token*, or ``None`` if unknown or expired."""
        now = datetime.now(UTC)
        with get_session(self.engine) as session:
            row = session.get(DashboardSession, token)
            if row is None:
                return None
            if as_utc(row.expires_at) <= now:
                session.delete(row)
                return None
            return dict(row.data or {})

    def save(self, token: str, data: dict[str, Any]) -> bool:
        """Replace the payload of an existing, unexpired session."""
        now = datetime.now(UTC)
        with get_session(self.engine) as session:
            row = session.get(DashboardSession, token)
            if row is None or as_utc(row.expires_at) <= now:
                return False
            row.data = dict(data)
            return True

    def destroy(self, token: str) -> None:
        with get_session(self.engine) as session:
            session.execute(delete(DashboardSession).where(DashboardSession.token == token))

    def purge_expired(self) -> int:
        now = datetime.now(UTC)
        with get_session(self.engine) as session:
            result = session.execute(
                delete(DashboardSession).where(DashboardSession.expires_at < now)
            )
            count = result.rowcount or 0
        if count:
            logger.info("Purged %d expired sessions", count)
        return count
