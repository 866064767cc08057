"""
modboard.api.routes.guilds — Authenticated guild dashboard endpoints
=====================================================================

Every route here requires a signed-in session (401 otherwise) and a
snowflake ``guildId`` (400 otherwise).  Handlers only validate, delegate to
:mod:`modboard.services.aggregation` on a worker thread and translate store
failures into a generic 500.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from modboard.api.deps import (
    get_config,
    get_engine,
    get_hub,
    require_csrf,
    require_user,
    valid_guild_id,
    valid_user_id,
)
from modboard.config import DashboardConfig
from modboard.database.engine import run_query
from modboard.schemas import (
    ActivityPoint,
    Alert,
    Analytics,
    DashboardMetrics,
    FeedEntry,
    GuildStats,
    GuildSummary,
    IdentityProfile,
    LeaderboardEntry,
    ModeratorStanding,
    ReinforcementCase,
    UserProfile,
)
from modboard.services import aggregation
from modboard.services.broadcast_hub import BroadcastHub

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["guilds"], dependencies=[Depends(require_user)])

Config = Annotated[DashboardConfig, Depends(get_config)]
DbEngine = Annotated[Engine, Depends(get_engine)]
GuildId = Annotated[str, Depends(valid_guild_id)]


async def _fetch(cfg: DashboardConfig, label: str, func: Callable[..., Any], *args, **kwargs):
    """Run one aggregation view; store errors and timeouts become a 500."""
    try:
        return await run_query(cfg.query_timeout_seconds, func, *args, **kwargs)
    except TimeoutError:
        logger.error("Timed out fetching %s after %ss", label, cfg.query_timeout_seconds)
    except SQLAlchemyError:
        logger.exception("Error fetching %s", label)
    raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Failed to fetch {label}")


# ---------------------------------------------------------------------------
# GET /guilds
# ---------------------------------------------------------------------------
@router.get("/guilds", response_model=list[GuildSummary])
def list_guilds(user: Annotated[IdentityProfile, Depends(require_user)]):
    """Guilds from the signed-in user's Discord profile."""
    return user.guilds


# ---------------------------------------------------------------------------
# Community stats
# ---------------------------------------------------------------------------
@router.get("/guild/{guildId}/stats", response_model=GuildStats)
async def guild_stats(guild_id: GuildId, cfg: Config, engine: DbEngine):
    return await _fetch(cfg, "stats", aggregation.get_stats, engine, guild_id)


@router.get("/guild/{guildId}/leaderboard", response_model=list[LeaderboardEntry])
async def guild_leaderboard(
    guild_id: GuildId,
    cfg: Config,
    engine: DbEngine,
    metric: str = Query("points"),
    limit: int = Query(10, ge=1, le=100),
):
    if metric not in aggregation.LEADERBOARD_METRICS:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid metric")
    return await _fetch(
        cfg, "leaderboard", aggregation.get_leaderboard, engine, guild_id, metric, limit
    )


@router.get("/guild/{guildId}/activity", response_model=list[ActivityPoint])
async def guild_activity(
    guild_id: GuildId,
    cfg: Config,
    engine: DbEngine,
    days: int = Query(7, ge=1, le=365),
):
    return await _fetch(cfg, "activity", aggregation.get_activity, engine, guild_id, days)


@router.get("/guild/{guildId}/user/{userId}", response_model=UserProfile)
async def guild_user(
    guild_id: GuildId,
    user_id: Annotated[str, Depends(valid_user_id)],
    cfg: Config,
    engine: DbEngine,
):
    return await _fetch(cfg, "user data", aggregation.get_user_profile, engine, guild_id, user_id)


# ---------------------------------------------------------------------------
# Moderation dashboard
# ---------------------------------------------------------------------------
@router.get("/guild/{guildId}/dashboard/metrics", response_model=DashboardMetrics)
async def dashboard_metrics(guild_id: GuildId, cfg: Config, engine: DbEngine):
    return await _fetch(cfg, "dashboard metrics", aggregation.get_dashboard_metrics, engine, guild_id)


@router.get("/guild/{guildId}/reinforcements", response_model=list[ReinforcementCase])
async def reinforcements(guild_id: GuildId, cfg: Config, engine: DbEngine):
    return await _fetch(cfg, "reinforcements", aggregation.get_reinforcement_queue, engine, guild_id)


@router.get("/guild/{guildId}/alerts", response_model=list[Alert])
async def alerts(guild_id: GuildId, cfg: Config, engine: DbEngine):
    return await _fetch(cfg, "alerts", aggregation.get_alerts, engine, guild_id)


@router.post(
    "/guild/{guildId}/alerts/{alertId}/read",
    response_model=Alert,
    dependencies=[Depends(require_csrf)],
)
async def mark_alert_read(
    guild_id: GuildId,
    alert_id: Annotated[int, Path(alias="alertId")],
    cfg: Config,
    engine: DbEngine,
    hub: Annotated[BroadcastHub, Depends(get_hub)],
):
    """Mark an alert read and tell the guild's other dashboards."""
    alert = await _fetch(cfg, "alert", aggregation.mark_alert_read, engine, guild_id, alert_id)
    if alert is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Alert not found")
    hub.publish(guild_id, "alert:read", {"id": alert.id})
    return alert


@router.get("/guild/{guildId}/activity-feed", response_model=list[FeedEntry])
async def activity_feed(guild_id: GuildId, cfg: Config, engine: DbEngine):
    return await _fetch(cfg, "activity feed", aggregation.get_activity_feed, engine, guild_id)


@router.get("/guild/{guildId}/moderators", response_model=list[ModeratorStanding])
async def moderators(guild_id: GuildId, cfg: Config, engine: DbEngine):
    return await _fetch(cfg, "moderators", aggregation.get_moderator_roster, engine, guild_id)


@router.get("/guild/{guildId}/analytics", response_model=Analytics)
async def analytics(guild_id: GuildId, cfg: Config, engine: DbEngine):
    return await _fetch(cfg, "analytics", aggregation.get_analytics, engine, guild_id)
