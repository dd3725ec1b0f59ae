"""
Membership ledger: the authoritative user -> team assignment.

The unique constraint on ``teamup_team_members.user_id`` is the second line
of defence behind the coordinator: a user can never hold two rows.
"""

from __future__ import annotations

import unicodedata
import uuid
from collections import defaultdict
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from teamup.models.team_member import TeamMember
from teamup.models.user import User
from teamup_shared.schemas.teams import MemberRead


def display_name_key(name: str) -> tuple[str, str]:
    """Sort key for people lists: Unicode-normalized, case-insensitive."""
    return unicodedata.normalize("NFKC", name).casefold(), name


async def get_membership(
    session: AsyncSession, user_id: uuid.UUID, *, for_update: bool = False
) -> Optional[TeamMember]:
    stmt = select(TeamMember).where(TeamMember.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_team_id_for_user(session: AsyncSession, user_id: uuid.UUID) -> Optional[str]:
    result = await session.execute(
        select(TeamMember.team_id).where(TeamMember.user_id == user_id).limit(1)
    )
    return result.scalar_one_or_none()


async def list_members(session: AsyncSession) -> dict[str, list[MemberRead]]:
    """All memberships grouped by team, each list sorted by display name."""
    result = await session.execute(
        select(TeamMember.team_id, TeamMember.user_id, TeamMember.role_category, User.name)
        .join(User, User.id == TeamMember.user_id)
    )

    by_team: dict[str, list[MemberRead]] = defaultdict(list)
    for team_id, user_id, role_category, name in result.all():
        by_team[team_id].append(
            MemberRead(user_id=str(user_id), name=name, role_category=role_category)
        )

    for members in by_team.values():
        members.sort(key=lambda m: (*display_name_key(m.name), m.user_id))
    return dict(by_team)
