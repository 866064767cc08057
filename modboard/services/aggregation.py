"""
modboard.services.aggregation — Guild Dashboard Views
=======================================================

Read-only aggregation over the bot's schema.  Every public function here is
synchronous, takes an :class:`Engine` plus an already-validated guild
snowflake, and returns a named record from :mod:`modboard.schemas`.  Route
handlers run them through :func:`modboard.database.engine.run_query`.

Nothing in this module writes to the store except :func:`mark_alert_read`,
and nothing retries: a failing query propagates to the caller.

Views whose result depends on "today" accept an optional ``now`` so tests
can pin the clock.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import UTC, datetime, time, timedelta

from sqlalchemy import Engine, func, or_, select
from sqlalchemy.orm import Session

from modboard.database.engine import get_session
from modboard.database.models import (
    Audit,
    DailyAggregate,
    Member,
    MessageStat,
    Notification,
    Points,
    PresenceSnapshot,
    User,
    UserAchievement,
    WarningCase,
)
from modboard.engine.derivations import (
    PRIORITIES,
    UNASSIGNED,
    UNKNOWN_MEMBER,
    alert_severity,
    as_utc,
    audit_status,
    case_minutes,
    completion_rate,
    completion_time,
    determine_priority,
    extract_tags,
    format_username,
    mean_response_minutes,
    moderator_score,
    notification_sentiment,
    presence_bucket,
    start_of_utc_day,
)
from modboard.schemas import (
    ActivityPoint,
    Alert,
    Analytics,
    CaseVolumePoint,
    DashboardMetrics,
    FeedEntry,
    GuildStats,
    LeaderboardEntry,
    MemberRecord,
    ModeratorLoad,
    ModeratorStanding,
    PointsRecord,
    ReinforcementCase,
    ResolutionPoint,
    SentimentPoint,
    UserProfile,
)

logger = logging.getLogger(__name__)

LEADERBOARD_METRICS = ("points", "level", "messages")
QUEUE_LIMIT = 50
ALERTS_LIMIT = 15
FEED_LIMIT = 30
ANALYTICS_DAYS = 14
TOP_MODERATORS = 8


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else datetime.now(UTC)


def _display_names(session: Session, user_ids: Iterable[str | None]) -> dict[str, str]:
    """Formatted ``name#discriminator`` for every known id in *user_ids*."""
    ids = {uid for uid in user_ids if uid}
    if not ids:
        return {}
    rows = session.scalars(select(User).where(User.id.in_(ids))).all()
    return {u.id: format_username(u.username, u.discriminator) for u in rows}


def _user_display(user: User | None) -> str:
    if user is None:
        return UNKNOWN_MEMBER
    return format_username(user.username, user.discriminator)


def _round(value: float) -> float:
    return round(value, 1)


def _alert(n: Notification) -> Alert:
    return Alert(
        id=n.id,
        type=n.type,
        severity=alert_severity(n.type),
        title=n.title or n.type,
        message=n.message,
        channel=n.channel_name or n.channel,
        user=n.mentioned_user,
        read=bool(n.read),
        created_at=as_utc(n.created_at),
    )


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------
def get_stats(engine: Engine, guild_id: str) -> GuildStats:
    """Active member count, message record count and total points."""
    with Session(engine) as session:
        total_members = session.scalar(
            select(func.count())
            .select_from(Member)
            .where(Member.guild_id == guild_id, Member.is_active.is_(True))
        ) or 0
        total_messages = session.scalar(
            select(func.count())
            .select_from(MessageStat)
            .where(MessageStat.guild_id == guild_id)
        ) or 0
        total_points = session.scalar(
            select(func.coalesce(func.sum(Points.points), 0))
            .where(Points.guild_id == guild_id)
        ) or 0

    return GuildStats(
        total_members=total_members,
        total_messages=total_messages,
        total_points=int(total_points),
    )


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------
def get_leaderboard(
    engine: Engine,
    guild_id: str,
    metric: str = "points",
    limit: int = 10,
) -> list[LeaderboardEntry]:
    """Top *limit* members by points, level or message count.

    Raises
    ------
    ValueError
        If *metric* is not one of :data:`LEADERBOARD_METRICS`.
    """
    if metric not in LEADERBOARD_METRICS:
        raise ValueError(f"Unknown leaderboard metric: {metric!r}")

    with Session(engine) as session:
        if metric in ("points", "level"):
            order_col = Points.points if metric == "points" else Points.level
            rows = session.scalars(
                select(Points)
                .where(Points.guild_id == guild_id)
                .order_by(order_col.desc())
                .limit(limit)
            ).all()
            return [
                LeaderboardEntry(
                    rank=i + 1,
                    user_id=p.user_id,
                    display_name=_user_display(p.user),
                    value=p.points if metric == "points" else p.level,
                    points=p.points,
                    level=p.level,
                )
                for i, p in enumerate(rows)
            ]

        msg_count = func.count(MessageStat.id).label("cnt")
        grouped = session.execute(
            select(MessageStat.user_id, msg_count)
            .where(MessageStat.guild_id == guild_id)
            .group_by(MessageStat.user_id)
            .order_by(msg_count.desc())
            .limit(limit)
        ).all()
        names = _display_names(session, (row.user_id for row in grouped))

    return [
        LeaderboardEntry(
            rank=i + 1,
            user_id=row.user_id,
            display_name=names.get(row.user_id, UNKNOWN_MEMBER),
            value=row.cnt,
        )
        for i, row in enumerate(grouped)
    ]


# ---------------------------------------------------------------------------
# Activity series
# ---------------------------------------------------------------------------
def get_activity(
    engine: Engine,
    guild_id: str,
    days: int = 7,
    now: datetime | None = None,
) -> list[ActivityPoint]:
    """Per-day message/image/attachment sums for the trailing *days*.

    A day bucket is in the window when its midnight (UTC) is at or after
    ``now - days``, so the boundary day counts only when the cutoff falls
    exactly on midnight.
    """
    cutoff = _now(now) - timedelta(days=days)
    since = cutoff.date()
    if cutoff.time() != time.min:
        since += timedelta(days=1)

    with Session(engine) as session:
        rows = session.execute(
            select(
                DailyAggregate.day.label("day"),
                func.coalesce(func.sum(DailyAggregate.messages), 0).label("messages"),
                func.coalesce(func.sum(DailyAggregate.images), 0).label("images"),
                func.coalesce(func.sum(DailyAggregate.attachments), 0).label("attachments"),
            )
            .where(DailyAggregate.guild_id == guild_id, DailyAggregate.day >= since)
            .group_by(DailyAggregate.day)
            .order_by(DailyAggregate.day.asc())
        ).all()

    return [
        ActivityPoint(
            date=row.day.isoformat(),
            messages=int(row.messages),
            images=int(row.images),
            attachments=int(row.attachments),
        )
        for row in rows
    ]


# ---------------------------------------------------------------------------
# Dashboard metrics
# ---------------------------------------------------------------------------
def get_dashboard_metrics(
    engine: Engine,
    guild_id: str,
    now: datetime | None = None,
) -> DashboardMetrics:
    """Headline numbers for the moderation dashboard.

    The mean response time is taken over completed cases when there are
    any, otherwise over the still-open ones (measured up to *now*).
    """
    now = _now(now)
    today = start_of_utc_day(now)

    with Session(engine) as session:
        cases = session.scalars(
            select(WarningCase).where(WarningCase.guild_id == guild_id)
        ).all()
        unread = session.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.guild_id == guild_id, Notification.read.is_(False))
        ) or 0

    active = [c for c in cases if c.active]
    completed = [c for c in cases if not c.active]
    completed_today = sum(1 for c in completed if completion_time(c, now) >= today)

    return DashboardMetrics(
        active_cases=len(active),
        avg_response_minutes=_round(mean_response_minutes(completed or active, now)),
        unread_alerts=unread,
        completion_rate=_round(completion_rate(len(active), len(completed))),
        completed_today=completed_today,
    )


# ---------------------------------------------------------------------------
# Reinforcement queue
# ---------------------------------------------------------------------------
def get_reinforcement_queue(engine: Engine, guild_id: str) -> list[ReinforcementCase]:
    """Most recent open cases with derived priority, status and tags."""
    with Session(engine) as session:
        cases = session.scalars(
            select(WarningCase)
            .where(WarningCase.guild_id == guild_id, WarningCase.active.is_(True))
            .order_by(WarningCase.created_at.desc())
            .limit(QUEUE_LIMIT)
        ).all()
        names = _display_names(
            session,
            [c.user_id for c in cases] + [c.moderator_id for c in cases],
        )

    return [
        ReinforcementCase(
            id=c.id,
            user_id=c.user_id,
            requester=names.get(c.user_id, UNKNOWN_MEMBER),
            moderator_id=c.moderator_id,
            assignee=(
                names.get(c.moderator_id, UNKNOWN_MEMBER) if c.moderator_id else UNASSIGNED
            ),
            reason=c.reason,
            priority=determine_priority(c.reason),
            status="in_progress" if c.moderator_id else "queued",
            tags=extract_tags(c.reason),
            created_at=as_utc(c.created_at),
            expires_at=as_utc(c.expires_at) if c.expires_at else None,
        )
        for c in cases
    ]


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------
def get_alerts(engine: Engine, guild_id: str) -> list[Alert]:
    with Session(engine) as session:
        rows = session.scalars(
            select(Notification)
            .where(Notification.guild_id == guild_id)
            .order_by(Notification.created_at.desc())
            .limit(ALERTS_LIMIT)
        ).all()
        return [_alert(n) for n in rows]


def mark_alert_read(engine: Engine, guild_id: str, alert_id: int) -> Alert | None:
    """Flag one notification as read.  Returns ``None`` if it doesn't exist
    in *guild_id*.
    """
    with get_session(engine) as session:
        n = session.scalar(
            select(Notification).where(
                Notification.id == alert_id,
                Notification.guild_id == guild_id,
            )
        )
        if n is None:
            return None
        n.read = True
        session.flush()
        alert = _alert(n)
    logger.info("Alert %s in guild %s marked read", alert_id, guild_id)
    return alert


# ---------------------------------------------------------------------------
# Activity feed
# ---------------------------------------------------------------------------
def get_activity_feed(engine: Engine, guild_id: str) -> list[FeedEntry]:
    with Session(engine) as session:
        rows = session.scalars(
            select(Audit)
            .where(Audit.guild_id == guild_id)
            .order_by(Audit.timestamp.desc())
            .limit(FEED_LIMIT)
        ).all()
        names = _display_names(session, (a.actor_id for a in rows))

    return [
        FeedEntry(
            id=a.id,
            action=a.action,
            actor_id=a.actor_id,
            actor=names.get(a.actor_id, UNKNOWN_MEMBER) if a.actor_id else "System",
            status=audit_status(a.action),
            timestamp=as_utc(a.timestamp),
        )
        for a in rows
    ]


# ---------------------------------------------------------------------------
# Moderator roster
# ---------------------------------------------------------------------------
def _latest_presence(session: Session, guild_id: str) -> dict[str, str]:
    """Most recent snapshot status per user."""
    rows = session.execute(
        select(PresenceSnapshot.user_id, PresenceSnapshot.status)
        .where(PresenceSnapshot.guild_id == guild_id)
        .order_by(PresenceSnapshot.user_id, PresenceSnapshot.timestamp.desc())
    ).all()
    latest: dict[str, str] = {}
    for row in rows:
        latest.setdefault(row.user_id, row.status)
    return latest


def get_moderator_roster(
    engine: Engine,
    guild_id: str,
    now: datetime | None = None,
) -> list[ModeratorStanding]:
    """Workload, throughput and presence for each active member, best first."""
    now = _now(now)
    today = start_of_utc_day(now)

    with Session(engine) as session:
        members = session.scalars(
            select(Member).where(Member.guild_id == guild_id, Member.is_active.is_(True))
        ).all()
        assigned = session.scalars(
            select(WarningCase).where(
                WarningCase.guild_id == guild_id,
                WarningCase.moderator_id.is_not(None),
            )
        ).all()
        presence = _latest_presence(session, guild_id)
        display = {m.user_id: _user_display(m.user) for m in members}

    by_moderator: dict[str, list[WarningCase]] = defaultdict(list)
    for case in assigned:
        by_moderator[case.moderator_id].append(case)

    standings: list[ModeratorStanding] = []
    for member in members:
        cases = by_moderator.get(member.user_id, [])
        active_count = sum(1 for c in cases if c.active)
        done = [c for c in cases if not c.active]
        completed_today = sum(1 for c in done if completion_time(c, now) >= today)
        mean_minutes = mean_response_minutes(done, now)

        standings.append(
            ModeratorStanding(
                user_id=member.user_id,
                display_name=display[member.user_id],
                active_assignments=active_count,
                completed_today=completed_today,
                avg_resolution_minutes=_round(mean_minutes),
                presence=presence_bucket(presence.get(member.user_id)),
                score=moderator_score(mean_minutes, active_count, completed_today),
            )
        )

    standings.sort(key=lambda s: (s.score, s.completed_today), reverse=True)
    return standings


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
def get_analytics(
    engine: Engine,
    guild_id: str,
    now: datetime | None = None,
) -> Analytics:
    """Fourteen-day case, resolution and sentiment trends plus moderator load.

    Day buckets are UTC dates, oldest first, the last one being today.
    """
    now = _now(now)
    window_start = start_of_utc_day(now) - timedelta(days=ANALYTICS_DAYS - 1)
    day_keys = [
        (window_start + timedelta(days=i)).date().isoformat()
        for i in range(ANALYTICS_DAYS)
    ]

    with Session(engine) as session:
        cases = session.scalars(
            select(WarningCase).where(
                WarningCase.guild_id == guild_id,
                or_(
                    WarningCase.created_at >= window_start,
                    WarningCase.expires_at >= window_start,
                ),
            )
        ).all()
        notifications = session.scalars(
            select(Notification).where(
                Notification.guild_id == guild_id,
                Notification.created_at >= window_start,
            )
        ).all()

        open_count = func.count(WarningCase.id).label("cnt")
        load_rows = session.execute(
            select(WarningCase.moderator_id, open_count)
            .where(WarningCase.guild_id == guild_id, WarningCase.active.is_(True))
            .group_by(WarningCase.moderator_id)
            .order_by(open_count.desc())
            .limit(TOP_MODERATORS)
        ).all()
        names = _display_names(session, (row.moderator_id for row in load_rows))

    created: dict[str, int] = defaultdict(int)
    resolved: dict[str, int] = defaultdict(int)
    resolution_minutes: dict[str, list[float]] = defaultdict(list)
    priorities = {p: 0 for p in PRIORITIES}

    for case in cases:
        created_at = as_utc(case.created_at)
        if created_at >= window_start:
            created[created_at.date().isoformat()] += 1
            priorities[determine_priority(case.reason)] += 1
        if not case.active:
            done_at = completion_time(case, now)
            if done_at >= window_start:
                key = done_at.date().isoformat()
                resolved[key] += 1
                resolution_minutes[key].append(case_minutes(created_at, done_at))

    sentiment: dict[str, dict[str, int]] = {
        key: {"positive": 0, "neutral": 0, "negative": 0} for key in day_keys
    }
    for n in notifications:
        key = as_utc(n.created_at).date().isoformat()
        if key in sentiment:
            sentiment[key][notification_sentiment(n.type)] += 1

    volume: list[CaseVolumePoint] = []
    cum_created = cum_resolved = 0
    for key in day_keys:
        cum_created += created[key]
        cum_resolved += resolved[key]
        volume.append(
            CaseVolumePoint(
                date=key,
                created=created[key],
                resolved=resolved[key],
                cumulative_created=cum_created,
                cumulative_resolved=cum_resolved,
                in_progress=cum_created - cum_resolved,
            )
        )

    resolution = [
        ResolutionPoint(
            date=key,
            avg_minutes=_round(
                sum(resolution_minutes[key]) / len(resolution_minutes[key])
            ) if resolution_minutes[key] else 0.0,
        )
        for key in day_keys
    ]

    return Analytics(
        case_volume=volume,
        priority_distribution=priorities,
        resolution_times=resolution,
        sentiment=[SentimentPoint(date=key, **sentiment[key]) for key in day_keys],
        top_moderators=[
            ModeratorLoad(
                moderator_id=row.moderator_id,
                display_name=(
                    names.get(row.moderator_id, UNKNOWN_MEMBER)
                    if row.moderator_id else UNASSIGNED
                ),
                active_cases=row.cnt,
            )
            for row in load_rows
        ],
    )


# ---------------------------------------------------------------------------
# User profile
# ---------------------------------------------------------------------------
def get_user_profile(engine: Engine, guild_id: str, user_id: str) -> UserProfile:
    """Membership, points, message count and completed achievements for one user."""
    with Session(engine) as session:
        member = session.scalar(
            select(Member).where(Member.guild_id == guild_id, Member.user_id == user_id)
        )
        points = session.scalar(
            select(Points).where(Points.guild_id == guild_id, Points.user_id == user_id)
        )
        message_count = session.scalar(
            select(func.count())
            .select_from(MessageStat)
            .where(MessageStat.guild_id == guild_id, MessageStat.user_id == user_id)
        ) or 0
        achievements = session.scalar(
            select(func.count())
            .select_from(UserAchievement)
            .where(
                UserAchievement.guild_id == guild_id,
                UserAchievement.user_id == user_id,
                UserAchievement.completed.is_(True),
            )
        ) or 0

        member_record = None
        if member is not None:
            member_record = MemberRecord(
                guild_id=member.guild_id,
                user_id=member.user_id,
                is_active=bool(member.is_active),
                roles=list(member.roles or []),
                joined_at=as_utc(member.joined_at) if member.joined_at else None,
                username=member.user.username if member.user else None,
                discriminator=member.user.discriminator if member.user else None,
                display_name=_user_display(member.user),
            )

    return UserProfile(
        member=member_record,
        points=PointsRecord(points=points.points, level=points.level) if points else None,
        message_count=message_count,
        achievements=achievements,
    )
