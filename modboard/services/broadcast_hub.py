"""
modboard.services.broadcast_hub — Guild-Scoped Broadcast Groups
=================================================================

Connection registry for the dashboard's live updates.  A WebSocket client
subscribes to a guild and joins the group ``guild:<id>``; producers call
:meth:`BroadcastHub.publish` to push an event to every member of a group.

Delivery is fire-and-forget: no acknowledgment, no persistence, no replay.
Each subscriber owns a FIFO queue drained by a single sender task, so one
connection sees events in the order they were published.

All mutation happens on the event loop thread.  Background threads (the
PG NOTIFY relay) hand events over with ``loop.call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_ids = itertools.count(1)

# Frames a subscriber may have waiting before it is considered stalled.
MAX_PENDING_FRAMES = 256


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


class Subscriber:
    """One live connection plus its outbound queue and group memberships."""

    def __init__(
        self,
        hub: BroadcastHub,
        connection: Connection,
        max_pending: int = MAX_PENDING_FRAMES,
    ) -> None:
        self.id = f"conn-{next(_ids)}"
        self.connection = connection
        self.groups: set[str] = set()
        self.closed = False
        self._hub = hub
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_pending)
        self._task = asyncio.get_running_loop().create_task(
            self._pump(), name=f"ws-sender-{self.id}"
        )

    def enqueue(self, frame: dict[str, Any]) -> bool:
        """Queue *frame* for sending.

        A subscriber whose queue is full is not keeping up; it is dropped
        from the hub instead of buffering without bound.  Returns ``False``
        when the frame was not queued.
        """
        if self.closed:
            return False
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(
                "Client %s has %d unsent frames; dropping connection",
                self.id, self._queue.maxsize,
            )
            self._hub.disconnect(self)
            return False
        return True

    async def drain(self) -> None:
        """Wait until everything enqueued so far has been sent (or dropped)."""
        await self._queue.join()

    async def _pump(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await self.connection.send_json(frame)
            except Exception:
                logger.warning("Send to %s failed; dropping connection", self.id, exc_info=True)
                self._queue.task_done()
                self._discard_pending()
                self._hub.disconnect(self)
                return
            self._queue.task_done()

    def _discard_pending(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    def close(self) -> None:
        self.closed = True
        self._discard_pending()
        if not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    def __repr__(self) -> str:
        return f"<Subscriber {self.id} groups={sorted(self.groups)}>"


class BroadcastHub:
    """Maps group keys to the set of subscribers currently in them."""

    def __init__(self, max_pending: int = MAX_PENDING_FRAMES) -> None:
        self.max_pending = max_pending
        self._groups: dict[str, set[Subscriber]] = defaultdict(set)
        self._subscribers: dict[str, Subscriber] = {}

    @staticmethod
    def group_key(guild_id: str) -> str:
        return f"guild:{guild_id}"

    # -- registry -----------------------------------------------------------
    def connect(self, connection: Connection) -> Subscriber:
        """Register a live connection.  Must be called on the event loop."""
        subscriber = Subscriber(self, connection, self.max_pending)
        self._subscribers[subscriber.id] = subscriber
        return subscriber

    def join(self, subscriber: Subscriber, guild_id: str) -> bool:
        """Add *subscriber* to the guild group; dropped subscribers stay out."""
        if subscriber.closed:
            return False
        key = self.group_key(guild_id)
        self._groups[key].add(subscriber)
        subscriber.groups.add(key)
        logger.info("Client %s subscribed to guild %s", subscriber.id, guild_id)
        return True

    def leave(self, subscriber: Subscriber, guild_id: str) -> None:
        key = self.group_key(guild_id)
        self._remove_from_group(subscriber, key)
        subscriber.groups.discard(key)

    def disconnect(self, subscriber: Subscriber) -> None:
        """Remove *subscriber* from every group and stop its sender."""
        if self._subscribers.pop(subscriber.id, None) is None:
            return
        for key in list(subscriber.groups):
            self._remove_from_group(subscriber, key)
        subscriber.groups.clear()
        subscriber.close()
        logger.info("Client disconnected: %s", subscriber.id)

    def _remove_from_group(self, subscriber: Subscriber, key: str) -> None:
        members = self._groups.get(key)
        if not members:
            return
        members.discard(subscriber)
        if not members:
            del self._groups[key]

    # -- delivery -----------------------------------------------------------
    def publish(self, guild_id: str, event: str, data: Any = None) -> int:
        """Queue *event* for every subscriber of *guild_id*.

        Returns the number of subscribers it was queued for.
        """
        members = self._groups.get(self.group_key(guild_id))
        if not members:
            logger.debug("No subscribers for guild %s (%s)", guild_id, event)
            return 0
        frame = {"event": event, "data": data}
        queued = sum(1 for subscriber in list(members) if subscriber.enqueue(frame))
        logger.debug("Broadcast %s to %d clients in guild %s", event, queued, guild_id)
        return queued

    # -- introspection ------------------------------------------------------
    def group_size(self, guild_id: str) -> int:
        return len(self._groups.get(self.group_key(guild_id), ()))

    @property
    def connection_count(self) -> int:
        return len(self._subscribers)

    def close(self) -> None:
        for subscriber in list(self._subscribers.values()):
            self.disconnect(subscriber)
