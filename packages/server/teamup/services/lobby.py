"""Lobby view: a read-only snapshot of every team and its members."""

from sqlalchemy.ext.asyncio import AsyncSession

from teamup.models.user import User
from teamup.services.memberships import get_team_id_for_user, list_members
from teamup.services.teams import get_teams
from teamup_shared.schemas.teams import LobbySnapshot, TeamRead
from teamup_shared.schemas.users import UserRead


async def get_lobby_snapshot(session: AsyncSession, user: User) -> LobbySnapshot:
    teams = await get_teams(session)
    members_by_team = await list_members(session)
    my_team_id = await get_team_id_for_user(session, user.id)

    return LobbySnapshot(
        user=UserRead.model_validate(user),
        my_team_id=my_team_id,
        teams=[TeamRead.model_validate(t) for t in teams],
        members_by_team={t.id: members_by_team.get(t.id, []) for t in teams},
    )
