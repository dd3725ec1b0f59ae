"""
Domain errors and their HTTP rendering.

Every refusal the lobby can produce is a TeamupError subclass carrying a
stable code, an HTTP status and a human-readable message. Handlers and
services raise them; the exception handler registered in main.py renders
them as ``{"ok": false, "code": ..., "message": ...}``.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from teamup_shared.schemas.common import ErrorResponse


class TeamupError(Exception):
    code = "TEAMUP_ERROR"
    status_code = 400
    message = "Request could not be completed"

    def __init__(self, message: str | None = None, *, team_id: str | None = None):
        self.message = message or self.message
        self.team_id = team_id
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return ErrorResponse(
            code=self.code, message=self.message, team_id=self.team_id
        ).model_dump(exclude_none=True)


class Unauthenticated(TeamupError):
    code = "UNAUTHENTICATED"
    status_code = 401
    message = "Authentication required"


class TeamNotFound(TeamupError):
    code = "TEAM_NOT_FOUND"
    status_code = 404
    message = "Team not found"


class TeamLocked(TeamupError):
    code = "TEAM_LOCKED"
    status_code = 409
    message = "Team is locked"


class AlreadyOnAnotherTeam(TeamupError):
    code = "ALREADY_ON_ANOTHER_TEAM"
    status_code = 409

    def __init__(self, team_id: str):
        super().__init__(f"You are already on team {team_id}", team_id=team_id)


class CompositionViolation(TeamupError):
    code = "COMPOSITION_VIOLATION"
    status_code = 409
    message = "Joining would break the team composition rules"


class NotTeamMember(TeamupError):
    code = "NOT_TEAM_MEMBER"
    status_code = 403
    message = "Only team members can do this"


class InvalidTeamName(TeamupError):
    code = "INVALID_TEAM_NAME"
    status_code = 400
    message = "Team name must be 1 to 32 characters"


class InvalidTransition(TeamupError):
    code = "INVALID_TRANSITION"
    status_code = 409
    message = "Team status transition not allowed"


class LockContention(TeamupError):
    """Transient: the transaction kept losing lock races. Safe to retry."""

    code = "LOCK_CONTENTION"
    status_code = 503
    message = "The team is busy, please try again"
    retry_after_seconds = 1


async def teamup_error_handler(request: Request, exc: TeamupError) -> JSONResponse:
    headers = None
    if isinstance(exc, LockContention):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
