"""Team, membership and lobby schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .common import RoleCategory, TeamStatus
from .users import UserRead


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class TeamRenameRequest(BaseModel):
    name: str = Field(max_length=200)  # Trimmed and re-checked by the service


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class TeamRead(BaseModel):
    id: str
    name: Optional[str] = None
    status: TeamStatus
    member_count: int
    rnd_count: int
    product_count: int
    growth_count: int
    root_count: int
    locked_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MemberRead(BaseModel):
    user_id: str
    name: str
    role_category: RoleCategory


class JoinResponse(BaseModel):
    ok: bool = True
    team_id: str


class LeaveResponse(BaseModel):
    ok: bool = True
    team_id: Optional[str] = None  # Team that was left, None if there was none


class TeamRenameResponse(BaseModel):
    ok: bool = True
    team_id: str
    name: str


class LobbySnapshot(BaseModel):
    """Read-only projection of the lobby for rendering and polling."""
    ok: bool = True
    user: UserRead
    my_team_id: Optional[str] = None
    teams: list[TeamRead]
    members_by_team: dict[str, list[MemberRead]]


class LobbyEvent(BaseModel):
    """Pushed on the lobby stream after a committed mutation."""
    type: str  # team.joined | team.left | team.renamed
    team_id: str
    user_id: str
