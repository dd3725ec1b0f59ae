"""
Authentication endpoints.

- Attendee registration (upsert by identifier) issuing a session
- Logout with token revocation
- Current user lookup
"""

from __future__ import annotations

from typing import Optional

import jwt
import structlog
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from teamup.core.auth import (
    authorization_header,
    create_session_token,
    decode_session_token,
    extract_token,
    get_current_user,
    revoke_token,
)
from teamup.core.config import get_settings
from teamup.core.database import get_session
from teamup.models.user import User
from teamup.services.users import register_user
from teamup_shared.schemas.common import OkResponse
from teamup_shared.schemas.users import RegisterRequest, RegisterResponse, UserRead, UserResponse

log = structlog.get_logger()
router = APIRouter()


def _set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
        max_age=settings.session_ttl_minutes * 60,
    )


@router.post("/register", response_model=RegisterResponse)
async def register(
    body: RegisterRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Register or re-register by identifier and start a session."""
    user = await register_user(session, body)
    await session.commit()

    token, _jti = create_session_token(user.id)
    _set_session_cookie(response, token)

    log.info("auth.session_issued", user_id=str(user.id))
    return RegisterResponse(user=UserRead.model_validate(user), token=token)


@router.post("/logout", response_model=OkResponse)
async def logout(
    request: Request,
    response: Response,
    authorization: Optional[str] = Depends(authorization_header),
):
    """Revoke the current session token, if any, and clear the cookie."""
    token = extract_token(request, authorization)
    if token:
        try:
            claims = decode_session_token(token)
        except jwt.PyJWTError:
            log.info("auth.logout_invalid_token")
        else:
            await revoke_token(claims["jti"], claims.get("exp"))
            log.info("auth.logout", user_id=claims["sub"])

    response.delete_cookie(get_settings().session_cookie_name, path="/")
    return OkResponse()


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return UserResponse(user=UserRead.model_validate(user))
