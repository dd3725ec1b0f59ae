"""Gathering RSVP and contest sign-up.

Both are one row per user, written with ON CONFLICT so concurrent requests
from the same user settle on a single row.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from teamup.core.database import dialect_insert
from teamup.models.base import utcnow
from teamup.models.registration import ContestRegistration, GatheringRegistration
from teamup_shared.schemas.common import ContestStatus

log = structlog.get_logger()


async def get_gathering_attendance(session: AsyncSession, user_id: uuid.UUID) -> Optional[bool]:
    registration = await session.get(GatheringRegistration, user_id)
    return registration.attending if registration else None


async def set_gathering_attendance(
    session: AsyncSession, user_id: uuid.UUID, attending: bool
) -> bool:
    now = utcnow()
    insert = dialect_insert(session, GatheringRegistration).values(
        user_id=user_id, attending=attending, created_at=now, updated_at=now
    )
    await session.execute(
        insert.on_conflict_do_update(
            index_elements=["user_id"],
            set_={"attending": insert.excluded.attending, "updated_at": insert.excluded.updated_at},
        )
    )

    log.info("gathering.answered", user_id=str(user_id), attending=attending)
    return attending


async def get_contest_status(session: AsyncSession, user_id: uuid.UUID) -> Optional[str]:
    registration = await session.get(ContestRegistration, user_id)
    return registration.status if registration else None


async def sign_up_for_contest(session: AsyncSession, user_id: uuid.UUID) -> str:
    """Idempotent: signing up twice keeps the first registration."""
    insert = dialect_insert(session, ContestRegistration).values(
        user_id=user_id, status=ContestStatus.REGISTERED.value, created_at=utcnow()
    )
    result = await session.execute(insert.on_conflict_do_nothing(index_elements=["user_id"]))
    if result.rowcount == 1:
        log.info("contest.signed_up", user_id=str(user_id))

    registration = await session.get(ContestRegistration, user_id, populate_existing=True)
    return registration.status
