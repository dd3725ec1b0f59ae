"""
Operator commands for the team pool.

    teamup-teams seed
    teamup-teams lock T07
    teamup-teams unlock T07
"""

import argparse
import asyncio
import sys

from teamup.core.config import get_settings
from teamup.core.database import engine, get_session_context
from teamup.core.errors import TeamupError
from teamup.core.logging import configure_logging
from teamup.services.teams import default_team_ids, seed_teams, set_team_status
from teamup_shared.schemas.common import TeamStatus


async def seed() -> None:
    ids = default_team_ids()
    async with get_session_context() as session:
        await seed_teams(session, ids)
    print(f"Ensured {len(ids)} teams ({ids[0]}..{ids[-1]}).")


async def change_status(team_id: str, status: TeamStatus) -> None:
    async with get_session_context() as session:
        team = await set_team_status(session, team_id, status)
    print(f"Team {team.id} is now {team.status}.")


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="teamup-teams", description="Manage the team pool.")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("seed", help="Create any missing teams in the pool")
    lock = commands.add_parser("lock", help="Lock a team; its roster can no longer change")
    lock.add_argument("team_id")
    unlock = commands.add_parser("unlock", help="Reopen a locked team")
    unlock.add_argument("team_id")

    args = parser.parse_args(argv)

    try:
        if args.command == "seed":
            await seed()
        elif args.command == "lock":
            await change_status(args.team_id, TeamStatus.LOCKED)
        else:
            await change_status(args.team_id, TeamStatus.FORMING)
    except TeamupError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await engine.dispose()
    return 0


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, "text")
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
