"""
modboard.api.deps — FastAPI dependency injection
==================================================

Config, engines, the session cookie codec and the guards every protected
route chains on: ``require_user`` (401), ``require_csrf`` (403) and the
snowflake path validators (400).
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, Path, Request, Response, status
from fastapi.requests import HTTPConnection
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from modboard.config import DashboardConfig, load_config
from modboard.database.engine import create_db_engine, run_db
from modboard.engine.derivations import is_snowflake
from modboard.schemas import IdentityProfile
from modboard.services.broadcast_hub import BroadcastHub
from modboard.services.session_store import SessionStore

logger = logging.getLogger(__name__)

SESSION_COOKIE = "modboard_session"
COOKIE_ALGORITHM = "HS256"
CSRF_HEADER = "X-CSRF-Token"

_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


# ---------------------------------------------------------------------------
# Config & engines
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_config() -> DashboardConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine(get_config().database_url)


@lru_cache(maxsize=4)
def _engine_for(url: str) -> Engine:
    return create_db_engine(url)


def get_session_engine(
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    engine: Annotated[Engine, Depends(get_engine)],
) -> Engine:
    """Engine of the session backend; the main engine unless configured apart."""
    if cfg.session_store_url == cfg.database_url:
        return engine
    return _engine_for(cfg.session_store_url)


def get_session_store(
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    engine: Annotated[Engine, Depends(get_session_engine)],
) -> SessionStore:
    return SessionStore(engine, cfg.session_ttl_seconds)


def get_hub(conn: HTTPConnection) -> BroadcastHub:
    return conn.app.state.hub


# ---------------------------------------------------------------------------
# Session cookie codec
# ---------------------------------------------------------------------------
def encode_session_cookie(token: str, cfg: DashboardConfig) -> str:
    """Sign a reference to session *token* with the session secret."""
    payload = {
        "sid": token,
        "exp": datetime.now(UTC) + timedelta(seconds=cfg.session_ttl_seconds),
    }
    return jwt.encode(payload, cfg.session_secret, algorithm=COOKIE_ALGORITHM)


def decode_session_cookie(value: str, cfg: DashboardConfig) -> str | None:
    """Return the session token named by a cookie, or ``None`` if the
    signature is bad or the cookie has expired.
    """
    try:
        payload = jwt.decode(value, cfg.session_secret, algorithms=[COOKIE_ALGORITHM])
    except InvalidTokenError:
        return None
    sid = payload.get("sid")
    return sid if isinstance(sid, str) and sid else None


def set_session_cookie(response: Response, token: str, cfg: DashboardConfig) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        encode_session_cookie(token, cfg),
        max_age=cfg.session_ttl_seconds,
        httponly=True,
        secure=cfg.cookie_secure,
        samesite="none" if cfg.is_production else "lax",
    )


def clear_session_cookie(response: Response, cfg: DashboardConfig) -> None:
    response.delete_cookie(
        SESSION_COOKIE,
        httponly=True,
        secure=cfg.cookie_secure,
        samesite="none" if cfg.is_production else "lax",
    )


# ---------------------------------------------------------------------------
# Current session / user
# ---------------------------------------------------------------------------
@dataclass
class WebSession:
    """The request's server-side session; ``token`` is None when there is none."""
    token: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


async def get_web_session(
    request: Request,
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> WebSession:
    raw = request.cookies.get(SESSION_COOKIE)
    token = decode_session_cookie(raw, cfg) if raw else None
    if token is None:
        return WebSession()
    data = await run_db(store.get, token)
    if data is None:
        return WebSession()
    return WebSession(token=token, data=data)


async def get_web_session_or_anonymous(
    request: Request,
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> WebSession:
    """Like :func:`get_web_session`, but an unreachable session backend reads
    as signed out instead of failing the request.
    """
    try:
        return await get_web_session(request, cfg, store)
    except SQLAlchemyError:
        logger.warning("Session backend unavailable; treating request as anonymous", exc_info=True)
        return WebSession()


def session_profile(web_session: WebSession) -> IdentityProfile | None:
    """The profile stored in *web_session*, or ``None``."""
    raw = web_session.data.get("user")
    if not raw:
        return None
    try:
        return IdentityProfile.model_validate(raw)
    except ValidationError:
        logger.warning("Discarding malformed profile in session")
        return None


def get_current_user(
    web_session: Annotated[WebSession, Depends(get_web_session)],
) -> IdentityProfile | None:
    """The signed-in moderator's profile, or ``None``."""
    return session_profile(web_session)


def require_user(
    user: Annotated[IdentityProfile | None, Depends(get_current_user)],
) -> IdentityProfile:
    """Validate the session and return the profile. Raises 401 if absent."""
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    return user


async def require_csrf(
    request: Request,
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    web_session: Annotated[WebSession, Depends(get_web_session)],
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> None:
    """Check the one-time anti-forgery token on unsafe methods.

    The token issued by ``GET /auth/csrf`` must come back in the
    ``X-CSRF-Token`` header; it is consumed on success.
    """
    if not cfg.csrf_enabled or request.method in _SAFE_METHODS:
        return

    expected = web_session.data.get("csrf")
    provided = request.headers.get(CSRF_HEADER)
    if not expected or not provided or not secrets.compare_digest(expected, provided):
        logger.warning("CSRF check failed for %s %s", request.method, request.url.path)
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Invalid CSRF token")

    data = dict(web_session.data)
    data.pop("csrf", None)
    await run_db(store.save, web_session.token, data)
    web_session.data = data


# ---------------------------------------------------------------------------
# Snowflake path parameters
# ---------------------------------------------------------------------------
def valid_guild_id(guild_id: Annotated[str, Path(alias="guildId")]) -> str:
    if not is_snowflake(guild_id):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid guildId")
    return guild_id


def valid_user_id(user_id: Annotated[str, Path(alias="userId")]) -> str:
    if not is_snowflake(user_id):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid userId")
    return user_id
