"""
tests/test_derivations.py — Pure Derivation Function Tests
============================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from modboard.engine.derivations import (
    alert_severity,
    as_utc,
    audit_status,
    case_minutes,
    completion_rate,
    completion_time,
    determine_priority,
    extract_tags,
    format_username,
    is_snowflake,
    mean_response_minutes,
    moderator_score,
    notification_sentiment,
    presence_bucket,
    round_half_up,
    start_of_utc_day,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _case(active: bool, created_at: datetime, expires_at: datetime | None = None):
    return SimpleNamespace(active=active, created_at=created_at, expires_at=expires_at)


# ===========================================================================
# Priority
# ===========================================================================
class TestDeterminePriority:
    @pytest.mark.parametrize(
        "reason, expected",
        [
            ("URGENT: raid incoming", "urgent"),
            ("Coordinated RAID in #general", "urgent"),
            ("critical exploit posted", "urgent"),
            ("High volume of spam", "high"),
            ("second warning for slurs", "high"),
            ("medium severity", "medium"),
            ("needs review", "medium"),
            ("spam", "low"),
        ],
    )
    def test_keyword_classification(self, reason, expected):
        assert determine_priority(reason) == expected

    def test_missing_reason_is_medium(self):
        assert determine_priority(None) == "medium"

    @pytest.mark.parametrize("reason", ["", "   ", "\t\n"])
    def test_blank_reason_counts_as_missing(self, reason):
        assert determine_priority(reason) == "medium"

    def test_urgent_wins_regardless_of_other_words(self):
        assert determine_priority("please review this, it is UrGeNt and high") == "urgent"


# ===========================================================================
# Tags
# ===========================================================================
class TestExtractTags:
    def test_example_sentence(self):
        tags = extract_tags("The #urgent-case needs a re-review NOW")
        assert tags == ["The", "#urgent-case", "needs", "re-review"]

    def test_strips_disallowed_characters(self):
        assert extract_tags("spam!! links?? @everyone") == ["spam", "links", "everyone"]

    def test_drops_short_tokens(self):
        assert extract_tags("a an to of it") == []

    def test_caps_at_four_and_keeps_order(self):
        tags = extract_tags("one two three four five six")
        assert tags == ["one", "two", "three", "four"]

    def test_duplicates_kept(self):
        assert extract_tags("spam spam spam") == ["spam", "spam", "spam"]

    def test_none(self):
        assert extract_tags(None) == []


# ===========================================================================
# Display / classification helpers
# ===========================================================================
class TestFormatUsername:
    def test_zero_discriminator_omitted(self):
        assert format_username("Alice", "0") == "Alice"

    def test_discriminator_appended(self):
        assert format_username("Alice", "1234") == "Alice#1234"

    def test_missing_discriminator(self):
        assert format_username("Alice", None) == "Alice"

    @pytest.mark.parametrize("discriminator", [None, "0", "1234"])
    def test_missing_name(self, discriminator):
        assert format_username(None, discriminator) == "Unknown Member"


class TestSnowflake:
    def test_accepts_18_digits(self):
        assert is_snowflake("123456789012345678")

    @pytest.mark.parametrize("value", ["12345678901234567", "1234567890123456789"])
    def test_accepts_bounds(self, value):
        assert is_snowflake(value)

    @pytest.mark.parametrize(
        "value", ["12a", "123", "12345678901234567890", "12345678901234567a", "", None, 123]
    )
    def test_rejects(self, value):
        assert not is_snowflake(value)


class TestClassifiers:
    @pytest.mark.parametrize(
        "action, expected",
        [
            ("Ban failed: missing permissions", "error"),
            ("webhook ERROR", "error"),
            ("Pending appeal", "pending"),
            ("role request", "pending"),
            ("Warned user", "success"),
            (None, "success"),
        ],
    )
    def test_audit_status(self, action, expected):
        assert audit_status(action) == expected

    @pytest.mark.parametrize(
        "notification_type, expected",
        [
            ("ban", "urgent"),
            ("warning_issued", "urgent"),
            ("strike", "warning"),
            ("bot_error", "warning"),
            ("case_resolved", "resolved"),
            ("level_up", "info"),
        ],
    )
    def test_alert_severity(self, notification_type, expected):
        assert alert_severity(notification_type) == expected

    @pytest.mark.parametrize(
        "notification_type, expected",
        [
            ("level_up", "positive"),
            ("achievement_unlocked", "positive"),
            ("warn", "negative"),
            ("ban", "negative"),
            ("incident", "negative"),
            ("join", "neutral"),
            (None, "neutral"),
        ],
    )
    def test_sentiment(self, notification_type, expected):
        assert notification_sentiment(notification_type) == expected

    @pytest.mark.parametrize(
        "status, expected",
        [("online", "online"), ("idle", "away"), ("dnd", "away"),
         ("offline", "offline"), (None, "offline"), ("invisible", "offline")],
    )
    def test_presence_bucket(self, status, expected):
        assert presence_bucket(status) == expected


# ===========================================================================
# Case timing
# ===========================================================================
class TestCaseTiming:
    def test_as_utc_attaches_zone_to_naive(self):
        assert as_utc(datetime(2026, 1, 1, 5)).tzinfo is UTC

    def test_start_of_utc_day(self):
        assert start_of_utc_day(NOW) == datetime(2026, 3, 10, tzinfo=UTC)

    def test_completion_prefers_expires_at(self):
        done = NOW - timedelta(minutes=5)
        assert completion_time(_case(False, NOW - timedelta(hours=1), done), NOW) == done

    def test_open_case_completes_now(self):
        assert completion_time(_case(True, NOW - timedelta(hours=1)), NOW) == NOW

    def test_closed_case_without_expiry_completes_at_creation(self):
        created = NOW - timedelta(hours=1)
        assert completion_time(_case(False, created), NOW) == created

    def test_case_minutes_never_negative(self):
        assert case_minutes(NOW, NOW - timedelta(minutes=10)) == 0.0

    def test_mean_response_minutes(self):
        cases = [
            _case(False, NOW - timedelta(minutes=30), NOW - timedelta(minutes=20)),
            _case(False, NOW - timedelta(minutes=60), NOW - timedelta(minutes=30)),
        ]
        assert mean_response_minutes(cases, NOW) == pytest.approx(20.0)

    def test_mean_response_minutes_empty(self):
        assert mean_response_minutes([], NOW) == 0.0


class TestCompletionRate:
    def test_no_cases_is_100(self):
        assert completion_rate(0, 0) == 100.0

    def test_three_active_one_completed_is_25(self):
        assert completion_rate(3, 1) == 25.0


# ===========================================================================
# Moderator score
# ===========================================================================
class TestModeratorScore:
    def test_clamped_to_maximum(self):
        assert moderator_score(0, 0, 5) == 100

    def test_clamped_to_minimum(self):
        assert moderator_score(30, 2, 0) == 55

    def test_in_range(self):
        # 100 - 2*10 - 3 + 3*1 = 80
        assert moderator_score(10, 3, 1) == 80

    def test_rounds_half_up(self):
        # 100 - 2*10.25 = 79.5
        assert moderator_score(10.25, 0, 0) == 80

    @pytest.mark.parametrize("value, expected", [(0.5, 1), (1.5, 2), (2.5, 3), (2.49, 2)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected
