"""User, session and presence schemas."""

from __future__ import annotations

import uuid
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .common import RoleCategory


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    """Register (or re-register) an attendee by external identifier."""
    name: str = Field(min_length=1, max_length=64)
    identifier: str = Field(min_length=1, max_length=128, description="E-mail or employee id")
    role_category: RoleCategory


class GatheringRequest(BaseModel):
    attending: bool = True


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class UserRead(BaseModel):
    id: uuid.UUID
    name: str
    identifier: str
    role_category: RoleCategory

    model_config = {"from_attributes": True}


class UserResponse(BaseModel):
    ok: bool = True
    user: UserRead


class RegisterResponse(BaseModel):
    ok: bool = True
    user: UserRead
    token: str  # Also set as the session cookie


class GatheringResponse(BaseModel):
    ok: bool = True
    attending: Optional[bool] = None  # None = never answered


class ContestResponse(BaseModel):
    ok: bool = True
    status: Optional[str] = None  # None = not signed up


# ---------------------------------------------------------------------------
# Presence (WebSocket payloads)
# ---------------------------------------------------------------------------

class OnlineUser(BaseModel):
    """Snapshot of a connected user, as pushed to lobby viewers."""
    user_id: str
    name: str
    identifier: str
    role: RoleCategory

    model_config = {"frozen": True}


class PresenceMessage(BaseModel):
    type: Literal["presence"] = "presence"
    users: list[OnlineUser]
