"""
tests/test_event_relay.py — Bot → Dashboard NOTIFY Relay Tests
================================================================

Payload validation and hub hand-off, without a real PG connection.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from modboard.services.event_relay import (
    EVENT_CHANNEL,
    MAX_PAYLOAD_BYTES,
    DashboardEventListener,
    build_payload,
    send_dashboard_event,
)

GUILD = "123456789012345678"


class TestBuildPayload:
    def test_shape(self):
        raw = build_payload(GUILD, "alert:new", {"id": 7})
        assert json.loads(raw) == {"guildId": GUILD, "event": "alert:new", "data": {"id": 7}}

    def test_rejects_bad_guild(self):
        with pytest.raises(ValueError):
            build_payload("123", "alert:new")

    def test_rejects_empty_event(self):
        with pytest.raises(ValueError):
            build_payload(GUILD, "")

    def test_rejects_oversized(self):
        with pytest.raises(ValueError, match="too large"):
            build_payload(GUILD, "blob", "x" * MAX_PAYLOAD_BYTES)


class TestSendDashboardEvent:
    def test_issues_pg_notify(self):
        engine = MagicMock()
        conn = engine.connect.return_value.__enter__.return_value

        send_dashboard_event(engine, GUILD, "case:new", {"id": 1})

        stmt, params = conn.execute.call_args.args
        assert "pg_notify" in str(stmt)
        assert params["channel"] == EVENT_CHANNEL
        assert json.loads(params["payload"])["event"] == "case:new"
        conn.commit.assert_called_once()

    def test_invalid_event_never_touches_store(self):
        engine = MagicMock()
        with pytest.raises(ValueError):
            send_dashboard_event(engine, "bad", "case:new")
        engine.connect.assert_not_called()


class TestHandlePayload:
    @pytest.fixture
    def listener(self):
        loop = MagicMock()
        loop.is_closed.return_value = False
        hub = MagicMock()
        return DashboardEventListener(MagicMock(), hub, loop)

    def test_valid_payload_scheduled_on_loop(self, listener):
        raw = json.dumps({"guildId": GUILD, "event": "alert:new", "data": {"id": 3}})
        assert listener.handle_payload(raw) is True
        listener._loop.call_soon_threadsafe.assert_called_once_with(
            listener._hub.publish, GUILD, "alert:new", {"id": 3}
        )

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            json.dumps({"guildId": "12", "event": "x"}),
            json.dumps({"guildId": GUILD}),
            json.dumps({"guildId": GUILD, "event": ""}),
        ],
    )
    def test_invalid_payload_ignored(self, listener, raw):
        assert listener.handle_payload(raw) is False
        listener._loop.call_soon_threadsafe.assert_not_called()

    def test_closed_loop_ignored(self, listener):
        listener._loop.is_closed.return_value = True
        raw = json.dumps({"guildId": GUILD, "event": "alert:new"})
        assert listener.handle_payload(raw) is False

    def test_initial_health(self, listener):
        assert listener.healthy is False
        assert listener.failed is False
