"""
modboard.api.auth — Discord OAuth2 → server-side session
==========================================================

Authorization-code flow with the ``identify`` and ``guilds`` scopes.  The
provider exchange is a single coroutine, :func:`exchange_code`, from an
authorization code to an :class:`IdentityProfile` (or
:class:`OAuthExchangeError`).  The callback binds the profile to a fresh
session and sets the signed session cookie.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Annotated
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Response
from fastapi.responses import RedirectResponse
from pydantic import ValidationError
from sqlalchemy import Engine, delete

from modboard.api.deps import (
    WebSession,
    clear_session_cookie,
    get_config,
    get_session_engine,
    get_session_store,
    get_web_session,
    get_web_session_or_anonymous,
    session_profile,
    set_session_cookie,
)
from modboard.config import DashboardConfig
from modboard.database.engine import get_session, run_db
from modboard.database.models import OAuthState
from modboard.schemas import IdentityProfile
from modboard.services.session_store import SessionStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

DISCORD_API = "https://discord.com/api/v10"
DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
OAUTH_SCOPES = "identify guilds"
OAUTH_STATE_TTL_SECONDS = 600
PROVIDER_TIMEOUT_SECONDS = 10


class OAuthExchangeError(Exception):
    """The identity provider rejected or failed the code exchange."""


# ---------------------------------------------------------------------------
# One-time state tokens
# ---------------------------------------------------------------------------
def _store_oauth_state(engine: Engine, state: str) -> None:
    """Persist an OAuth state token and prune stale entries."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        session.add(OAuthState(state=state, created_at=datetime.now(UTC)))


def _consume_oauth_state(engine: Engine, state: str) -> bool:
    """Consume a one-time OAuth state token if valid and unexpired."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        row = session.get(OAuthState, state)
        if row is None:
            return False
        session.delete(row)
        return True


# ---------------------------------------------------------------------------
# Provider exchange
# ---------------------------------------------------------------------------
def _json_body(resp: httpx.Response, what: str, expected: type):
    """Decode a provider response, insisting on the JSON shape *expected*."""
    try:
        body = resp.json()
    except ValueError as exc:
        raise OAuthExchangeError(f"{what} response is not JSON") from exc
    if not isinstance(body, expected):
        raise OAuthExchangeError(f"{what} response has an unexpected shape")
    return body


async def exchange_code(
    code: str,
    cfg: DashboardConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> IdentityProfile:
    """Trade an authorization *code* for the user's identity and guild list.

    Raises
    ------
    OAuthExchangeError
        On any non-200 answer, transport failure, non-JSON body or
        malformed profile.
    """
    transport = transport or httpx.AsyncHTTPTransport(retries=1)
    try:
        async with httpx.AsyncClient(
            timeout=PROVIDER_TIMEOUT_SECONDS, transport=transport
        ) as client:
            token_resp = await client.post(
                f"{DISCORD_API}/oauth2/token",
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": cfg.discord_callback_url,
                    "client_id": cfg.discord_client_id,
                    "client_secret": cfg.discord_client_secret,
                },
            )
            if token_resp.status_code != 200:
                raise OAuthExchangeError(
                    f"Token exchange failed with HTTP {token_resp.status_code}"
                )

            access_token = _json_body(token_resp, "Token", dict).get("access_token")
            if not access_token:
                raise OAuthExchangeError("No access token returned")

            headers = {"Authorization": f"Bearer {access_token}"}
            user_resp = await client.get(f"{DISCORD_API}/users/@me", headers=headers)
            guilds_resp = await client.get(f"{DISCORD_API}/users/@me/guilds", headers=headers)
    except httpx.HTTPError as exc:
        raise OAuthExchangeError(f"Discord request failed: {exc}") from exc

    if user_resp.status_code != 200:
        raise OAuthExchangeError(f"Failed to fetch Discord user (HTTP {user_resp.status_code})")
    user_info = _json_body(user_resp, "User", dict)

    guilds: list = []
    if guilds_resp.status_code != 200:
        logger.warning("Guild list unavailable (HTTP %s); continuing without", guilds_resp.status_code)
    else:
        try:
            guilds = _json_body(guilds_resp, "Guild list", list)
        except OAuthExchangeError as exc:
            logger.warning("%s; continuing without guilds", exc)

    try:
        return IdentityProfile(
            id=str(user_info["id"]),
            username=user_info.get("username") or "Unknown",
            discriminator=user_info.get("discriminator"),
            avatar=user_info.get("avatar"),
            guilds=guilds,
        )
    except (KeyError, TypeError, ValidationError) as exc:
        raise OAuthExchangeError("Malformed Discord profile") from exc


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/discord")
async def start_login(
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    engine: Annotated[Engine, Depends(get_session_engine)],
):
    """Redirect to Discord's OAuth2 consent screen."""
    logger.info("Starting Discord OAuth flow")
    state = secrets.token_urlsafe(32)
    await run_db(_store_oauth_state, engine, state)

    query = urlencode(
        {
            "client_id": cfg.discord_client_id,
            "redirect_uri": cfg.discord_callback_url,
            "response_type": "code",
            "scope": OAUTH_SCOPES,
            "state": state,
        }
    )
    return RedirectResponse(f"{DISCORD_AUTHORIZE_URL}?{query}", status_code=302)


@router.get("/discord/callback")
async def callback(
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    engine: Annotated[Engine, Depends(get_session_engine)],
    store: Annotated[SessionStore, Depends(get_session_store)],
    web_session: Annotated[WebSession, Depends(get_web_session)],
    code: str | None = None,
    state: str | None = None,
):
    """Exchange the code, start a session and send the user to the dashboard."""
    logger.info("Discord callback received")
    failure = RedirectResponse(cfg.auth_failure_url, status_code=302)

    if not code or not state:
        logger.warning("OAuth callback without code/state")
        return failure
    if not await run_db(_consume_oauth_state, engine, state):
        logger.warning("OAuth callback with invalid or expired state")
        return failure

    try:
        profile = await exchange_code(code, cfg)
    except OAuthExchangeError as exc:
        logger.warning("Discord OAuth failed: %s", exc)
        return failure

    # Rotate: the authenticated session never reuses a pre-login token.
    data = {k: v for k, v in web_session.data.items() if k != "csrf"}
    data["user"] = profile.model_dump(mode="json")
    token = await run_db(store.create, data)
    if web_session.token:
        await run_db(store.destroy, web_session.token)

    logger.info("OAuth successful for %s, redirecting to dashboard", profile.username)
    response = RedirectResponse(cfg.dashboard_url, status_code=302)
    set_session_cookie(response, token, cfg)
    return response


@router.get("/logout")
async def logout(
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    store: Annotated[SessionStore, Depends(get_session_store)],
    web_session: Annotated[WebSession, Depends(get_web_session)],
):
    logger.info("User logging out")
    if web_session.token:
        await run_db(store.destroy, web_session.token)
    response = RedirectResponse(cfg.dashboard_url, status_code=302)
    clear_session_cookie(response, cfg)
    return response


@router.get("/user")
def current_user(
    web_session: Annotated[WebSession, Depends(get_web_session_or_anonymous)],
):
    """The session's profile, or ``null`` when nobody is signed in."""
    user = session_profile(web_session)
    if user is None:
        return None
    return user.model_dump(mode="json", by_alias=True)


@router.get("/csrf")
async def csrf_token(
    response: Response,
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    store: Annotated[SessionStore, Depends(get_session_store)],
    web_session: Annotated[WebSession, Depends(get_web_session)],
):
    """Issue a one-time anti-forgery token bound to the session."""
    if not cfg.csrf_enabled:
        return {"csrfToken": None}

    token = secrets.token_urlsafe(32)
    data = {**web_session.data, "csrf": token}

    saved = False
    if web_session.token:
        saved = await run_db(store.save, web_session.token, data)
    if not saved:
        session_token = await run_db(store.create, data)
        set_session_cookie(response, session_token, cfg)

    return {"csrfToken": token}
