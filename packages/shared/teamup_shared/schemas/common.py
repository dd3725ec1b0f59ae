from enum import Enum
from typing import Optional
from pydantic import BaseModel

class RoleCategory(str, Enum):
    RND = "RND"
    PRODUCT = "PRODUCT"
    GROWTH = "GROWTH"
    ROOT = "ROOT"
    FUNCTION = "FUNCTION"

class TeamStatus(str, Enum):
    FORMING = "forming"
    LOCKED = "locked"

# Valid operator transitions for a team's status
TEAM_TRANSITIONS: dict[TeamStatus, list[TeamStatus]] = {
    TeamStatus.FORMING: [TeamStatus.LOCKED],
    TeamStatus.LOCKED: [TeamStatus.FORMING],
}

class ContestStatus(str, Enum):
    REGISTERED = "registered"

class OkResponse(BaseModel):
    ok: bool = True

class ErrorResponse(BaseModel):
    ok: bool = False
    code: str
    message: str
    team_id: Optional[str] = None
