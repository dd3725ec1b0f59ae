"""
Team registry: the seeded pool of teams, their status and display names.

Composition counters live on the team rows but are written only by the
join/leave coordinator.
"""

from __future__ import annotations

import uuid
from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from teamup.core.config import get_settings
from teamup.core.database import dialect_insert
from teamup.core.errors import InvalidTeamName, InvalidTransition, NotTeamMember, TeamNotFound
from teamup.models.base import utcnow
from teamup.models.team import Team
from teamup.models.team_member import TeamMember
from teamup_shared.schemas.common import TEAM_TRANSITIONS, TeamStatus

log = structlog.get_logger()

TEAM_NAME_MAX_LENGTH = 32


def default_team_ids(pool_size: int | None = None) -> list[str]:
    """T01, T02, ... up to the configured pool size."""
    size = pool_size if pool_size is not None else get_settings().team_pool_size
    return [f"T{i:02d}" for i in range(1, size + 1)]


def _insert_ignore(session: AsyncSession, values: list[dict]):
    return dialect_insert(session, Team).values(values).on_conflict_do_nothing(index_elements=["id"])


async def seed_teams(session: AsyncSession, ids: Iterable[str] | None = None) -> None:
    """Make sure every team in the pool exists. Safe to run concurrently."""
    team_ids = list(ids) if ids is not None else default_team_ids()
    if not team_ids:
        return
    await session.execute(_insert_ignore(session, [{"id": tid} for tid in team_ids]))


async def ensure_teams_seeded(session_factory: sessionmaker) -> None:
    """Seed in a transaction of its own, ahead of a coordinator transaction."""
    async with session_factory() as session:
        async with session.begin():
            await seed_teams(session)


async def get_teams(session: AsyncSession) -> Sequence[Team]:
    result = await session.execute(select(Team).order_by(Team.id))
    return result.scalars().all()


async def get_team(
    session: AsyncSession, team_id: str, *, for_update: bool = False
) -> Optional[Team]:
    stmt = select(Team).where(Team.id == team_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_team_or_404(
    session: AsyncSession, team_id: str, *, for_update: bool = False
) -> Team:
    team = await get_team(session, team_id, for_update=for_update)
    if team is None:
        raise TeamNotFound(team_id=team_id)
    return team


async def set_team_status(session: AsyncSession, team_id: str, status: TeamStatus) -> Team:
    """Lock or unlock a team. Takes the team row lock so it orders with joins."""
    team = await get_team_or_404(session, team_id, for_update=True)
    current = TeamStatus(team.status)
    if current == status:
        return team
    if status not in TEAM_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move team {team_id} from {current.value} to {status.value}",
            team_id=team_id,
        )

    team.status = status.value
    team.locked_at = utcnow() if status == TeamStatus.LOCKED else None
    session.add(team)
    await session.flush()

    log.info("team.status_changed", team_id=team_id, status=status.value)
    return team


def normalize_team_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned or len(cleaned) > TEAM_NAME_MAX_LENGTH:
        raise InvalidTeamName()
    return cleaned


async def rename_team(
    session: AsyncSession, team_id: str, user_id: uuid.UUID, name: str
) -> Team:
    """Set a team's display name. Only its members may do this."""
    cleaned = normalize_team_name(name)
    team = await get_team_or_404(session, team_id, for_update=True)

    result = await session.execute(
        select(TeamMember).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
    )
    if result.scalar_one_or_none() is None:
        raise NotTeamMember("Only team members can rename the team", team_id=team_id)

    team.name = cleaned
    session.add(team)
    await session.flush()

    log.info("team.renamed", team_id=team_id, user_id=str(user_id))
    return team
