"""
modboard.api.routes.realtime — WebSocket live-update endpoint
===============================================================

Protocol (JSON text frames, both directions)::

    → {"event": "subscribe:guild",   "data": "123456789012345678"}
    ← {"event": "subscribed",        "data": {"guildId": "123456789012345678"}}
    → {"event": "unsubscribe:guild", "data": "123456789012345678"}
    ← {"event": "<name>",            "data": <payload>}     # broadcasts

Closing the socket removes the connection from every group.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from modboard.api.deps import get_config, get_hub
from modboard.config import DashboardConfig
from modboard.engine.derivations import is_snowflake
from modboard.services.broadcast_hub import BroadcastHub

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])


def _error(message: str) -> dict:
    return {"event": "error", "data": {"message": message}}


@router.websocket("/ws")
async def live_updates(
    websocket: WebSocket,
    cfg: Annotated[DashboardConfig, Depends(get_config)],
    hub: Annotated[BroadcastHub, Depends(get_hub)],
):
    origin = websocket.headers.get("origin")
    if origin and origin.rstrip("/") not in cfg.cors_origins:
        logger.warning("WebSocket blocked for origin %s", origin)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscriber = hub.connect(websocket)
    logger.info("Client connected: %s", subscriber.id)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                subscriber.enqueue(_error("Malformed message"))
                continue

            if subscriber.closed:
                # Dropped by the hub for falling behind.
                await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
                return

            event = message.get("event") if isinstance(message, dict) else None
            guild_id = str(message.get("data") or "") if isinstance(message, dict) else ""

            if event not in ("subscribe:guild", "unsubscribe:guild"):
                subscriber.enqueue(_error(f"Unknown event: {event}"))
                continue
            if not is_snowflake(guild_id):
                subscriber.enqueue(_error("Invalid guildId"))
                continue

            if event == "subscribe:guild":
                hub.join(subscriber, guild_id)
                subscriber.enqueue({"event": "subscribed", "data": {"guildId": guild_id}})
            else:
                hub.leave(subscriber, guild_id)
                subscriber.enqueue({"event": "unsubscribed", "data": {"guildId": guild_id}})
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(subscriber)
