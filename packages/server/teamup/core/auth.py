"""
Session authentication for lobby attendees.

Supports:
- Signed JWT session tokens (HS256) with a Redis revocation list
- Token from the session cookie or an ``Authorization: Bearer`` header
- WebSocket handshake auth via ``token`` query parameter or cookie
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends, Request, WebSocket
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from teamup.core.config import get_settings
from teamup.core.database import get_session_factory
from teamup.core.errors import Unauthenticated
from teamup.core.redis import get_redis
from teamup.models.user import User

log = structlog.get_logger()

REDIS_REVOKED_PREFIX = "teamup:jwt:revoked:"

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_session_token(
    user_id: uuid.UUID, *, expires_delta: timedelta | None = None
) -> tuple[str, str]:
    """Create a signed session token. Returns (token, jti)."""
    settings = get_settings()
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.session_ttl_minutes))
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_session_token(token: str) -> dict:
    """Decode and verify a session token. Raises jwt.PyJWTError on failure."""
    settings = get_settings()
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "exp", "jti"]},
    )


# ---------------------------------------------------------------------------
# Revocation (Redis)
# ---------------------------------------------------------------------------

async def revoke_token(jti: str, expires_at: Optional[int] = None) -> None:
    """Add a token id to the revocation list until the token would expire anyway."""
    ttl = get_settings().session_ttl_minutes * 60
    if expires_at is not None:
        ttl = max(1, int(expires_at - datetime.now(timezone.utc).timestamp()))
    redis = await get_redis()
    await redis.setex(f"{REDIS_REVOKED_PREFIX}{jti}", ttl, "1")


async def is_token_revoked(jti: str) -> bool:
    redis = await get_redis()
    return await redis.exists(f"{REDIS_REVOKED_PREFIX}{jti}") > 0


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return request.cookies.get(get_settings().session_cookie_name)


async def resolve_session(token: Optional[str]) -> dict:
    """Validate a token and its revocation status. Returns the claims."""
    if not token:
        raise Unauthenticated()
    try:
        claims = decode_session_token(token)
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid or expired session")

    if await is_token_revoked(claims["jti"]):
        raise Unauthenticated("Session has been revoked")
    return claims


async def resolve_user(token: Optional[str], session: AsyncSession) -> User:
    claims = await resolve_session(token)
    try:
        user_id = uuid.UUID(claims["sub"])
    except ValueError:
        raise Unauthenticated("Invalid or expired session")

    user = await session.get(User, user_id)
    if user is None:
        raise Unauthenticated("User not found")
    return user


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Depends(authorization_header),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> User:
    """Main authentication dependency: Bearer header first, then cookie.

    Uses its own short session so no transaction stays open while the
    handler runs its own.
    """
    token = extract_token(request, authorization)
    async with session_factory() as session:
        user = await resolve_user(token, session)
    request.state.user_id = user.id
    structlog.contextvars.bind_contextvars(user_id=str(user.id))
    return user


async def authenticate_websocket(
    websocket: WebSocket, token: Optional[str], session: AsyncSession
) -> User:
    """Handshake auth for WebSockets: query token first, then cookie."""
    return await resolve_user(
        token or websocket.cookies.get(get_settings().session_cookie_name), session
    )
