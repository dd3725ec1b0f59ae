"""
API v1 Router

Team, lobby and registration endpoints for the signed-in attendee.
"""

from fastapi import APIRouter
from . import lobby, registrations, teams

router = APIRouter()

router.include_router(teams.router, prefix="/teams", tags=["Teams"])
router.include_router(lobby.router, prefix="/lobby", tags=["Lobby"])
router.include_router(registrations.router, tags=["Registrations"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/teams/{team_id}/join",
            "/teams/leave",
            "/teams/{team_id}/name",
            "/lobby",
            "/lobby/stream",
            "/gathering",
            "/contest-signup",
        ],
    }
