"""
Team membership endpoints.

- POST /{team_id}/join: Join a team (idempotent for the current team)
- POST /leave: Leave the current team, if any
- POST /{team_id}/name: Rename a team (members only)

Joins and leaves go through the coordinator, which runs its own
transactions; the committed change is then announced on the lobby stream.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from teamup.api.deps import get_fanout
from teamup.core.auth import get_current_user
from teamup.core.database import get_session, get_session_factory
from teamup.core.events import publish_lobby_event
from teamup.core.fanout import Fanout
from teamup.models.user import User
from teamup.services.coordinator import join_team, leave_team
from teamup.services.teams import ensure_teams_seeded, rename_team
from teamup_shared.schemas.teams import (
    JoinResponse,
    LeaveResponse,
    TeamRenameRequest,
    TeamRenameResponse,
)

router = APIRouter()


@router.post("/leave", response_model=LeaveResponse)
async def leave(
    user: User = Depends(get_current_user),
    session_factory: sessionmaker = Depends(get_session_factory),
    fanout: Fanout = Depends(get_fanout),
):
    team_id = await leave_team(session_factory, user)
    if team_id is not None:
        await publish_lobby_event(fanout, "team.left", team_id, str(user.id))
    return LeaveResponse(team_id=team_id)


@router.post("/{team_id}/join", response_model=JoinResponse)
async def join(
    team_id: str,
    user: User = Depends(get_current_user),
    session_factory: sessionmaker = Depends(get_session_factory),
    fanout: Fanout = Depends(get_fanout),
):
    """Join a team. Refusals come back as ``{"ok": false, "code", "message"}``."""
    await ensure_teams_seeded(session_factory)
    joined = await join_team(session_factory, user, team_id)
    await publish_lobby_event(fanout, "team.joined", joined, str(user.id))
    return JoinResponse(team_id=joined)


@router.post("/{team_id}/name", response_model=TeamRenameResponse)
async def rename(
    team_id: str,
    body: TeamRenameRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    fanout: Fanout = Depends(get_fanout),
):
    team = await rename_team(session, team_id, user.id, body.name)
    await session.commit()
    await publish_lobby_event(fanout, "team.renamed", team.id, str(user.id))
    return TeamRenameResponse(team_id=team.id, name=team.name)
