"""Initial dashboard schema

Revision ID: 5c2e7a91d4f0
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e7a91d4f0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create the bot-owned tables the dashboard reads plus its auth state."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("discriminator", sa.String(4), nullable=True),
        sa.Column("avatar", sa.String(100), nullable=True),
        _created_at(),
    )

    op.create_table(
        "members",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column(
            "user_id",
            sa.String(20),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("roles", JSONType, nullable=True),
        _created_at("joined_at"),
        sa.UniqueConstraint("guild_id", "user_id", name="uq_members_guild_user"),
    )
    op.create_index("ix_members_guild_active", "members", ["guild_id", "is_active"])

    op.create_table(
        "points",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column(
            "user_id",
            sa.String(20),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("guild_id", "user_id", name="uq_points_guild_user"),
    )
    op.create_index("ix_points_guild_points", "points", ["guild_id", "points"])

    op.create_table(
        "message_stats",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column("user_id", sa.String(20), nullable=False),
        sa.Column("channel_id", sa.String(20), nullable=True),
        _created_at(),
    )
    op.create_index("ix_message_stats_guild_user", "message_stats", ["guild_id", "user_id"])

    op.create_table(
        "daily_aggregates",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("images", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attachments", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("guild_id", "date", name="uq_daily_aggregates_guild_date"),
    )

    op.create_table(
        "warnings",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column("user_id", sa.String(20), nullable=False),
        sa.Column("moderator_id", sa.String(20), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_warnings_guild_active", "warnings", ["guild_id", "active"])
    op.create_index("ix_warnings_guild_created", "warnings", ["guild_id", "created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index(
        "ix_notifications_guild_created", "notifications", ["guild_id", "created_at"]
    )

    op.create_table(
        "audits",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(20), nullable=True),
        sa.Column("action", sa.String(200), nullable=False),
        _created_at("timestamp"),
    )
    op.create_index("ix_audits_guild_ts", "audits", ["guild_id", "timestamp"])

    op.create_table(
        "presence_snapshots",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column("user_id", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        _created_at("timestamp"),
    )
    op.create_index(
        "ix_presence_guild_user_ts",
        "presence_snapshots",
        ["guild_id", "user_id", "timestamp"],
    )

    op.create_table(
        "user_achievements",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column("user_id", sa.String(20), nullable=False),
        sa.Column("achievement_key", sa.String(100), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "guild_id", "user_id", "achievement_key", name="uq_user_achievements_key"
        ),
    )

    op.create_table(
        "oauth_states",
        sa.Column("state", sa.String(128), primary_key=True),
        _created_at(),
    )
    op.create_index("ix_oauth_states_created_at", "oauth_states", ["created_at"])

    op.create_table(
        "dashboard_sessions",
        sa.Column("token", sa.String(128), primary_key=True),
        sa.Column("data", JSONType, nullable=False),
        _created_at(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_dashboard_sessions_expires_at", "dashboard_sessions", ["expires_at"]
    )


def downgrade() -> None:
    """Drop every dashboard table."""
    op.drop_index("ix_dashboard_sessions_expires_at", table_name="dashboard_sessions")
    op.drop_table("dashboard_sessions")
    op.drop_index("ix_oauth_states_created_at", table_name="oauth_states")
    op.drop_table("oauth_states")
    op.drop_table("user_achievements")
    op.drop_index("ix_presence_guild_user_ts", table_name="presence_snapshots")
    op.drop_table("presence_snapshots")
    op.drop_index("ix_audits_guild_ts", table_name="audits")
    op.drop_table("audits")
    op.drop_index("ix_notifications_guild_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_warnings_guild_created", table_name="warnings")
    op.drop_index("ix_warnings_guild_active", table_name="warnings")
    op.drop_table("warnings")
    op.drop_table("daily_aggregates")
    op.drop_index("ix_message_stats_guild_user", table_name="message_stats")
    op.drop_table("message_stats")
    op.drop_index("ix_points_guild_points", table_name="points")
    op.drop_table("points")
    op.drop_index("ix_members_guild_active", table_name="members")
    op.drop_table("members")
    op.drop_table("users")
