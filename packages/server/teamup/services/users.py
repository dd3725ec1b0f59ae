"""
Attendee registration.

Users are keyed by their external identifier; registering again with the
same identifier updates the name and role in place.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from teamup.core.database import dialect_insert
from teamup.models.base import utcnow
from teamup.models.user import User
from teamup_shared.schemas.users import RegisterRequest

log = structlog.get_logger()


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


async def get_user(session: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    return await session.get(User, user_id)


async def get_user_by_identifier(session: AsyncSession, identifier: str) -> Optional[User]:
    result = await session.execute(
        select(User).where(User.identifier == normalize_identifier(identifier))
    )
    return result.scalar_one_or_none()


async def register_user(session: AsyncSession, data: RegisterRequest) -> User:
    """Create the user or update the existing one with the same identifier.

    A role change does not touch an existing membership: the membership
    keeps the role it was counted under.
    """
    identifier = normalize_identifier(data.identifier)
    name = data.name.strip()
    role = data.role_category.value

    # A concurrent registration with the same identifier makes this a no-op
    insert = dialect_insert(session, User).values(
        id=uuid.uuid4(), name=name, identifier=identifier, role_category=role, created_at=utcnow()
    )
    result = await session.execute(insert.on_conflict_do_nothing(index_elements=["identifier"]))
    created = result.rowcount == 1

    user = await get_user_by_identifier(session, identifier)
    if created:
        log.info("user.registered", user_id=str(user.id))
    else:
        user.name = name
        user.role_category = role
        session.add(user)
        await session.flush()
        log.info("user.updated", user_id=str(user.id))

    await session.refresh(user)
    return user
