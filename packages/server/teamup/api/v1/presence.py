"""
Presence WebSocket.

- WS /ws/presence: Authenticated socket receiving presence snapshots

Frames from the server: ``{"type": "presence", "users": [...]}`` and
``{"type": "ping"}``. Clients answer pings with ``{"type": "pong"}``; any
inbound frame counts as a sign of life, and a client ``ping`` gets a
``pong``.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from redis.exceptions import RedisError
from sqlalchemy.orm import sessionmaker

from teamup.core.auth import authenticate_websocket
from teamup.core.database import get_session_factory
from teamup.core.errors import Unauthenticated
from teamup_shared.schemas.users import OnlineUser

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/presence")
async def presence_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    # Authenticate before accepting
    try:
        async with session_factory() as session:
            user = await authenticate_websocket(websocket, token, session)
    except Unauthenticated:
        await websocket.close(code=4001, reason="unauthorized")
        return

    presence = websocket.app.state.presence
    online = OnlineUser(
        user_id=str(user.id),
        name=user.name,
        identifier=user.identifier,
        role=user.role_category,
    )
    conn = None

    try:
        conn = await presence.connect(websocket, online)
        while True:
            data = await websocket.receive_text()
            presence.mark_alive(conn)
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                continue

            if isinstance(frame, dict) and frame.get("type") == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
    except WebSocketDisconnect:
        logger.debug("Presence socket closed by client: user=%s", user.id)
    except (RedisError, OSError) as exc:
        logger.warning("Presence socket failed: user=%s error=%r", user.id, exc)
        await websocket.close(code=1011)
    finally:
        if conn is not None:
            await presence.disconnect(conn)
