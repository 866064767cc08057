"""
modboard.schemas — Named Result Records
========================================

One pydantic model per dashboard view.  Aggregation functions build these
directly and the routes use them as ``response_model``; field names are
snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Record(BaseModel):
    """Base for every view record: camelCase aliases, populate by name."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
class GuildSummary(Record):
    id: str
    name: str
    icon: str | None = None
    owner: bool = False
    permissions: str | None = None


class IdentityProfile(Record):
    """What the session remembers about a signed-in moderator."""
    id: str
    username: str
    discriminator: str | None = None
    avatar: str | None = None
    guilds: list[GuildSummary] = []


# ---------------------------------------------------------------------------
# Stats / leaderboard / activity
# ---------------------------------------------------------------------------
class GuildStats(Record):
    total_members: int
    total_messages: int
    total_points: int


class LeaderboardEntry(Record):
    rank: int
    user_id: str
    display_name: str
    value: int
    points: int | None = None
    level: int | None = None


class ActivityPoint(Record):
    date: str
    messages: int
    images: int
    attachments: int


# ---------------------------------------------------------------------------
# Moderation dashboard
# ---------------------------------------------------------------------------
class DashboardMetrics(Record):
    active_cases: int
    avg_response_minutes: float
    unread_alerts: int
    completion_rate: float
    completed_today: int


class ReinforcementCase(Record):
    id: int
    user_id: str
    requester: str
    moderator_id: str | None
    assignee: str
    reason: str | None
    priority: str
    status: str
    tags: list[str]
    created_at: datetime
    expires_at: datetime | None = None


class Alert(Record):
    id: int
    type: str
    severity: str
    title: str
    message: str | None
    channel: str | None = None
    user: str | None = None
    read: bool
    created_at: datetime


class FeedEntry(Record):
    id: int
    action: str
    actor_id: str | None
    actor: str
    status: str
    timestamp: datetime


class ModeratorStanding(Record):
    user_id: str
    display_name: str
    active_assignments: int
    completed_today: int
    avg_resolution_minutes: float
    presence: str
    score: int


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
class CaseVolumePoint(Record):
    date: str
    created: int
    resolved: int
    cumulative_created: int
    cumulative_resolved: int
    in_progress: int


class ResolutionPoint(Record):
    date: str
    avg_minutes: float


class SentimentPoint(Record):
    date: str
    positive: int
    neutral: int
    negative: int


class ModeratorLoad(Record):
    moderator_id: str | None
    display_name: str
    active_cases: int


class Analytics(Record):
    case_volume: list[CaseVolumePoint]
    priority_distribution: dict[str, int]
    resolution_times: list[ResolutionPoint]
    sentiment: list[SentimentPoint]
    top_moderators: list[ModeratorLoad]


# ---------------------------------------------------------------------------
# User profile
# ---------------------------------------------------------------------------
class MemberRecord(Record):
    guild_id: str
    user_id: str
    is_active: bool
    roles: list[Any] = []
    joined_at: datetime | None = None
    username: str | None = None
    discriminator: str | None = None
    display_name: str


class PointsRecord(Record):
    points: int
    level: int


class UserProfile(Record):
    member: MemberRecord | None
    points: PointsRecord | None
    message_count: int
    achievements: int
