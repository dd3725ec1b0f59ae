"""
Lobby change stream.

Committed joins, leaves and renames are published on the ``lobby`` fan-out
topic. The SSE endpoint relays them so lobby pages re-fetch their snapshot
instead of polling; a heartbeat comment keeps idle proxies from closing the
stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import Request

from teamup.core.fanout import Fanout
from teamup_shared.schemas.teams import LobbyEvent

logger = logging.getLogger(__name__)

LOBBY_TOPIC = "lobby"
HEARTBEAT_INTERVAL = 30  # seconds
POLL_INTERVAL = 1.0  # seconds


async def publish_lobby_event(fanout: Fanout, event_type: str, team_id: str, user_id: str) -> None:
    """Announce a committed lobby change. Never raises: the change is already durable."""
    event = LobbyEvent(type=event_type, team_id=team_id, user_id=user_id)
    try:
        await fanout.publish(LOBBY_TOPIC, event.model_dump())
    except Exception:
        logger.warning("Lobby event publish failed: %s team=%s", event_type, team_id, exc_info=True)


async def lobby_event_stream(
    request: Request,
    fanout: Fanout,
    heartbeat_interval: float = HEARTBEAT_INTERVAL,
) -> AsyncGenerator[dict, None]:
    """SSE generator of lobby events with a keepalive heartbeat."""
    subscription = await fanout.subscribe(LOBBY_TOPIC)
    loop = asyncio.get_running_loop()
    last_sent = loop.time()

    try:
        while True:
            if await request.is_disconnected():
                break

            message = await subscription.get(timeout=min(POLL_INTERVAL, heartbeat_interval))
            if message is None:
                if loop.time() - last_sent >= heartbeat_interval:
                    last_sent = loop.time()
                    yield {"comment": "heartbeat"}
                continue

            last_sent = loop.time()
            yield {
                "event": message.get("type", "message"),
                "data": json.dumps(message),
            }
    except asyncio.CancelledError:
        logger.info("Lobby stream cancelled")
        raise
    finally:
        await subscription.close()
