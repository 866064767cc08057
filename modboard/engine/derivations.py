"""
modboard.engine.derivations — Pure Derivation Functions
=========================================================

Stateless transforms consumed by the aggregation views: keyword
classification of free text, tag extraction, display-name formatting,
case timing and the moderator score.  No I/O, no database, no clock reads
(callers pass ``now``), so everything here is trivially unit-testable.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Protocol

SNOWFLAKE_RE = re.compile(r"^\d{17,19}$")

UNKNOWN_MEMBER = "Unknown Member"
UNASSIGNED = "Unassigned"

# Discord's post-migration usernames carry the discriminator "0".
_NO_DISCRIMINATOR = "0"

_TAG_STRIP_RE = re.compile(r"[^A-Za-z0-9#_-]")
_MIN_TAG_LENGTH = 3
_MAX_TAGS = 4

# (keywords, result); first match wins.
_PRIORITY_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("urgent", "raid", "critical"), "urgent"),
    (("high", "warning"), "high"),
    (("medium", "review"), "medium"),
)

_ALERT_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("urgent", "warning", "ban"), "urgent"),
    (("error", "strike"), "warning"),
    (("resolved",), "resolved"),
)

_AUDIT_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("fail", "error"), "error"),
    (("pending", "request"), "pending"),
)

PRIORITIES = ("urgent", "high", "medium", "low")

# Moderator score
SCORE_BASE = 100.0
SCORE_MIN = 55.0
SCORE_MAX = 100.0
MINUTES_WEIGHT = 2.0
ACTIVE_WEIGHT = 1.0
COMPLETED_WEIGHT = 3.0


class CaseLike(Protocol):
    active: bool
    created_at: datetime
    expires_at: datetime | None


def _first_match(text: str, rules, default: str) -> str:
    lowered = text.lower()
    for keywords, result in rules:
        if any(word in lowered for word in keywords):
            return result
    return default


# ---------------------------------------------------------------------------
# Text classification
# ---------------------------------------------------------------------------
def determine_priority(reason: str | None) -> str:
    """Classify a case reason as ``urgent`` / ``high`` / ``medium`` / ``low``.

    A missing or blank reason is ``medium``.
    """
    if reason is None or not reason.strip():
        return "medium"
    return _first_match(reason, _PRIORITY_RULES, "low")


def extract_tags(reason: str | None) -> list[str]:
    """Up to four cleaned words of length >= 3 from *reason*, in order."""
    if not reason:
        return []
    tags: list[str] = []
    for token in reason.split():
        cleaned = _TAG_STRIP_RE.sub("", token)
        if len(cleaned) >= _MIN_TAG_LENGTH:
            tags.append(cleaned)
            if len(tags) == _MAX_TAGS:
                break
    return tags


def audit_status(action: str | None) -> str:
    """``error`` / ``pending`` / ``success`` from an audit action string."""
    return _first_match(action or "", _AUDIT_RULES, "success")


def alert_severity(notification_type: str | None) -> str:
    """Map a notification type onto ``urgent`` / ``warning`` / ``resolved`` / ``info``."""
    return _first_match(notification_type or "", _ALERT_RULES, "info")


def notification_sentiment(notification_type: str | None) -> str:
    """``positive`` for level/achievement, ``negative`` for warn/ban/incident."""
    lowered = (notification_type or "").lower()
    if "level" in lowered or "achievement" in lowered:
        return "positive"
    if "warn" in lowered or "ban" in lowered or "incident" in lowered:
        return "negative"
    return "neutral"


def presence_bucket(status: str | None) -> str:
    if status == "online":
        return "online"
    if status in ("idle", "dnd"):
        return "away"
    return "offline"


def format_username(name: str | None, discriminator: str | None = None) -> str:
    if not name:
        return UNKNOWN_MEMBER
    if discriminator and discriminator != _NO_DISCRIMINATOR:
        return f"{name}#{discriminator}"
    return name


def is_snowflake(value: object) -> bool:
    return isinstance(value, str) and SNOWFLAKE_RE.match(value) is not None


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite hands them back naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def start_of_utc_day(now: datetime) -> datetime:
    now = as_utc(now).astimezone(UTC)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def completion_time(case: CaseLike, now: datetime) -> datetime:
    """``expires_at`` if set, else *now* for open cases or ``created_at``."""
    if case.expires_at is not None:
        return as_utc(case.expires_at)
    return as_utc(now) if case.active else as_utc(case.created_at)


def case_minutes(created_at: datetime, completed_at: datetime) -> float:
    delta: timedelta = as_utc(completed_at) - as_utc(created_at)
    return max(0.0, delta.total_seconds() / 60.0)


def mean_response_minutes(cases: Iterable[CaseLike], now: datetime) -> float:
    """Arithmetic mean of per-case durations in minutes; 0 for no cases."""
    durations = [
        case_minutes(case.created_at, completion_time(case, now)) for case in cases
    ]
    if not durations:
        return 0.0
    return sum(durations) / len(durations)


def completion_rate(active: int, completed: int) -> float:
    total = active + completed
    if total == 0:
        return 100.0
    return completed / total * 100.0


# ---------------------------------------------------------------------------
# Moderator score
# ---------------------------------------------------------------------------
def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def moderator_score(
    mean_minutes: float,
    active_assignments: int,
    completed_today: int,
) -> int:
    """Bounded 55–100 standing for one moderator.

    ``100 - 2 * mean_minutes - active_assignments + 3 * completed_today``,
    clamped, then rounded half-up.
    """
    raw = (
        SCORE_BASE
        - MINUTES_WEIGHT * mean_minutes
        - ACTIVE_WEIGHT * active_assignments
        + COMPLETED_WEIGHT * completed_today
    )
    return round_half_up(min(SCORE_MAX, max(SCORE_MIN, raw)))
