"""
modboard.services.event_relay — Bot → Dashboard Events over PG LISTEN/NOTIFY
==============================================================================

The bot is a separate process.  When something a moderator should see live
happens (a new case, an alert, a level-up), it calls
:func:`send_dashboard_event`, which issues ``NOTIFY dashboard_events`` with
a JSON payload::

    {"guildId": "123456789012345678", "event": "alert:new", "data": {...}}

Inside the API process :class:`DashboardEventListener` LISTENs on that
channel from a background thread and hands each payload to
:meth:`BroadcastHub.publish` on the event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import select as _select
import threading
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from modboard.engine.derivations import is_snowflake

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from modboard.services.broadcast_hub import BroadcastHub

logger = logging.getLogger(__name__)

EVENT_CHANNEL = "dashboard_events"

# PostgreSQL rejects NOTIFY payloads of 8000 bytes or more.
MAX_PAYLOAD_BYTES = 7999


def build_payload(guild_id: str, event: str, data: Any = None) -> str:
    """Serialise one dashboard event for NOTIFY.

    Raises
    ------
    ValueError
        If *guild_id* is not a snowflake, *event* is empty, or the payload
        is too large for NOTIFY.
    """
    if not is_snowflake(guild_id):
        raise ValueError(f"Invalid guild id for dashboard event: {guild_id!r}")
    if not event:
        raise ValueError("Dashboard event name must not be empty")
    raw = json.dumps({"guildId": guild_id, "event": event, "data": data}, default=str)
    if len(raw.encode("utf-8")) > MAX_PAYLOAD_BYTES:
        raise ValueError(f"Dashboard event payload too large ({len(raw)} bytes)")
    return raw


def send_dashboard_event(engine: Engine, guild_id: str, event: str, data: Any = None) -> None:
    """Publish an event to every dashboard process listening on the store."""
    raw = build_payload(guild_id, event, data)
    with engine.connect() as conn:
        conn.execute(
            text("SELECT pg_notify(:channel, :payload)"),
            {"channel": EVENT_CHANNEL, "payload": raw},
        )
        conn.commit()


class DashboardEventListener:
    """Background LISTEN thread relaying NOTIFY payloads into a hub.

    Reconnects with exponential backoff + jitter; gives up after
    ``max_reconnect_attempts`` consecutive failures.
    """

    def __init__(
        self,
        engine: Engine,
        hub: BroadcastHub,
        loop: asyncio.AbstractEventLoop,
        *,
        max_reconnect_attempts: int = 10,
    ) -> None:
        self._engine = engine
        self._hub = hub
        self._loop = loop
        self._max_reconnect_attempts = max_reconnect_attempts
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()
        self._healthy = False
        self._failed = False

    @property
    def healthy(self) -> bool:
        return self._healthy and not self._failed

    @property
    def failed(self) -> bool:
        return self._failed

    def handle_payload(self, raw_payload: str) -> bool:
        """Parse one NOTIFY payload and schedule the broadcast.

        Returns ``False`` for payloads that were ignored.
        """
        try:
            message = json.loads(raw_payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid dashboard event payload (not JSON): %s", raw_payload)
            return False

        if not isinstance(message, dict):
            logger.warning("Dashboard event payload is not an object: %s", raw_payload)
            return False

        guild_id = message.get("guildId")
        event = message.get("event")
        if not is_snowflake(guild_id) or not isinstance(event, str) or not event:
            logger.warning("Dashboard event missing guildId/event: %s", raw_payload)
            return False

        if self._loop.is_closed():
            logger.warning("Cannot relay '%s' — event loop is closed", event)
            return False

        self._loop.call_soon_threadsafe(self._hub.publish, guild_id, event, message.get("data"))
        return True

    def start(self) -> None:
        """Start the LISTEN thread (raw psycopg2 connection + ``select()``)."""
        import psycopg2

        max_backoff = 60.0
        base_backoff = 1.0

        def _listen_thread() -> None:
            # str(engine.url) masks the password; psycopg2 needs the real one.
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {EVENT_CHANNEL};")
                    logger.info("PG LISTEN started on channel '%s'", EVENT_CHANNEL)

                    attempt = 0
                    self._healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            logger.debug("NOTIFY received: %s", notify.payload)
                            try:
                                self.handle_payload(notify.payload or "")
                            except Exception:
                                logger.exception("Error relaying NOTIFY: %s", notify.payload)

                except Exception:
                    self._healthy = False
                    attempt += 1

                    if attempt >= self._max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. Live updates disabled.",
                            self._max_reconnect_attempts,
                        )
                        self._failed = True
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). Reconnecting in %.1fs…",
                        attempt, self._max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        thread = threading.Thread(
            target=_listen_thread, daemon=True, name="dashboard-event-listener"
        )
        self._thread = thread
        thread.start()
        logger.info("Dashboard event listener thread started")

    def stop(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
            logger.info("Dashboard event listener thread stopped")
