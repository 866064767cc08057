"""
modboard.database.models — SQLAlchemy 2.0 Data Models
======================================================

Schema shared with the moderation bot.  The bot writes; the dashboard API
only reads, except for the auth tables at the bottom and the ``read`` flag
on notifications.

Tables:
- users              — Discord accounts (snowflake string PK)
- members            — Guild membership, one row per (guild, user)
- points             — Per-guild points / level, one row per (guild, user)
- message_stats      — Append-only per-message counter rows
- daily_aggregates   — Per-guild daily message/image/attachment totals
- warnings           — Moderation "reinforcement" cases
- notifications      — Moderator alerts with opaque metadata
- audits             — Logged moderator / bot actions
- presence_snapshots — Last known online status samples
- user_achievements  — Achievement progress per member
- oauth_states       — One-time OAuth ``state`` tokens
- dashboard_sessions — Durable browser session backend
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all dashboard ORM models."""


# ---------------------------------------------------------------------------
# Users — one row per Discord account
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    discriminator: Mapped[str | None] = mapped_column(String(4), default=None)
    avatar: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.username!r}>"


# ---------------------------------------------------------------------------
# Members — a user's membership in one guild
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    user_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    roles: Mapped[list[str] | None] = mapped_column(JSONType, default=list)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(lazy="joined")

    __table_args__ = (
        UniqueConstraint("guild_id", "user_id", name="uq_members_guild_user"),
        Index("ix_members_guild_active", "guild_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Member guild={self.guild_id} user={self.user_id} active={self.is_active}>"


# ---------------------------------------------------------------------------
# Points — per-guild gamification score
# ---------------------------------------------------------------------------
class Points(Base):
    __tablename__ = "points"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    user_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    points: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=0)

    user: Mapped[User] = relationship(lazy="joined")

    __table_args__ = (
        UniqueConstraint("guild_id", "user_id", name="uq_points_guild_user"),
        Index("ix_points_guild_points", "guild_id", "points"),
    )

    def __repr__(self) -> str:
        return f"<Points guild={self.guild_id} user={self.user_id} pts={self.points}>"


# ---------------------------------------------------------------------------
# MessageStat — append-only per-message counter
# ---------------------------------------------------------------------------
class MessageStat(Base):
    __tablename__ = "message_stats"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    user_id: Mapped[str] = mapped_column(String(20), nullable=False)
    channel_id: Mapped[str | None] = mapped_column(String(20), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_message_stats_guild_user", "guild_id", "user_id"),
    )


# ---------------------------------------------------------------------------
# DailyAggregate — per-day activity counters written by the bot
# ---------------------------------------------------------------------------
class DailyAggregate(Base):
    __tablename__ = "daily_aggregates"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    day: Mapped[date] = mapped_column("date", Date, nullable=False)
    messages: Mapped[int] = mapped_column(Integer, default=0)
    images: Mapped[int] = mapped_column(Integer, default=0)
    attachments: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("guild_id", "date", name="uq_daily_aggregates_guild_date"),
    )


# ---------------------------------------------------------------------------
# WarningCase — a moderation "reinforcement" case
# ---------------------------------------------------------------------------
class WarningCase(Base):
    """A moderation case, tracked from creation (active) to resolution.

    Resolved cases have ``active = False``; their completion time is
    ``expires_at`` when set, otherwise ``created_at``.
    """
    __tablename__ = "warnings"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    user_id: Mapped[str] = mapped_column(String(20), nullable=False)
    moderator_id: Mapped[str | None] = mapped_column(String(20), default=None)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        Index("ix_warnings_guild_active", "guild_id", "active"),
        Index("ix_warnings_guild_created", "guild_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<WarningCase id={self.id} guild={self.guild_id} active={self.active}>"


# ---------------------------------------------------------------------------
# Notification — alert for moderators
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str | None] = mapped_column(String(200), default=None)
    message: Mapped[str | None] = mapped_column(Text, default=None)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_guild_created", "guild_id", "created_at"),
    )

    # Known metadata keys; anything else in the blob is ignored.
    def _meta_str(self, key: str) -> str | None:
        meta = self.metadata_ if isinstance(self.metadata_, dict) else {}
        value = meta.get(key)
        return str(value) if value is not None else None

    @property
    def channel(self) -> str | None:
        return self._meta_str("channel")

    @property
    def channel_name(self) -> str | None:
        return self._meta_str("channelName")

    @property
    def mentioned_user(self) -> str | None:
        return self._meta_str("user")

    def __repr__(self) -> str:
        return f"<Notification id={self.id} type={self.type!r} read={self.read}>"


# ---------------------------------------------------------------------------
# Audit — append-only action log
# ---------------------------------------------------------------------------
class Audit(Base):
    __tablename__ = "audits"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(20), default=None)
    action: Mapped[str] = mapped_column(String(200), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_audits_guild_ts", "guild_id", "timestamp"),
    )


# ---------------------------------------------------------------------------
# PresenceSnapshot — sampled online status
# ---------------------------------------------------------------------------
class PresenceSnapshot(Base):
    __tablename__ = "presence_snapshots"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    user_id: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_presence_guild_user_ts", "guild_id", "user_id", "timestamp"),
    )


# ---------------------------------------------------------------------------
# UserAchievement — achievement progress per member
# ---------------------------------------------------------------------------
class UserAchievement(Base):
    __tablename__ = "user_achievements"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    user_id: Mapped[str] = mapped_column(String(20), nullable=False)
    achievement_key: Mapped[str] = mapped_column(String(100), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        UniqueConstraint(
            "guild_id", "user_id", "achievement_key", name="uq_user_achievements_key"
        ),
    )


# ---------------------------------------------------------------------------
# OAuthState — one-time OAuth state tokens
# ---------------------------------------------------------------------------
class OAuthState(Base):
    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


# ---------------------------------------------------------------------------
# DashboardSession — durable session backend
# ---------------------------------------------------------------------------
class DashboardSession(Base):
    """Server-side session state keyed by an opaque token.

    The browser only ever holds a signed reference to ``token``.
    """
    __tablename__ = "dashboard_sessions"

    token: Mapped[str] = mapped_column(String(128), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<DashboardSession expires={self.expires_at}>"
