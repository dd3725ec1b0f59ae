"""
Lobby endpoints.

- GET /: Snapshot of all teams, their members and the caller's team
- GET /stream: SSE stream of lobby change events
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sse_starlette.sse import EventSourceResponse

from teamup.api.deps import get_fanout
from teamup.core.auth import get_current_user
from teamup.core.database import get_session
from teamup.core.events import lobby_event_stream
from teamup.core.fanout import Fanout
from teamup.models.user import User
from teamup.services.lobby import get_lobby_snapshot
from teamup.services.teams import seed_teams
from teamup_shared.schemas.teams import LobbySnapshot

router = APIRouter()


@router.get("", response_model=LobbySnapshot)
async def lobby(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await seed_teams(session)
    return await get_lobby_snapshot(session, user)


@router.get("/stream")
async def lobby_stream(
    request: Request,
    user: User = Depends(get_current_user),
    fanout: Fanout = Depends(get_fanout),
):
    """
    Stream lobby changes via SSE.

    Each event is ``{"type", "team_id", "user_id"}``; clients re-fetch the
    snapshot on receipt. Emits ``: heartbeat`` comments every 30 seconds.
    """
    return EventSourceResponse(lobby_event_stream(request, fanout))
