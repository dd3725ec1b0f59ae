"""
Join/leave coordinator.

The only writer of team membership and team counters. Every attempt is a
single transaction that locks the caller's membership row first and the
team row second, re-validates against the durable counters and either
commits all writes or none.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from teamup.core.config import get_settings
from teamup.core.errors import (
    AlreadyOnAnotherTeam,
    CompositionViolation,
    LockContention,
    TeamLocked,
    TeamNotFound,
    Unauthenticated,
)
from teamup.models.team_member import TeamMember
from teamup.models.user import User
from teamup.services.memberships import get_membership
from teamup.services.teams import get_team
from teamup_shared.composition import check_composition, release_counts
from teamup_shared.schemas.common import RoleCategory, TeamStatus

log = structlog.get_logger()

T = TypeVar("T")

# lock_not_available, deadlock_detected, serialization_failure
TRANSIENT_SQLSTATES = {"55P03", "40P01", "40001"}
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"

# Constraint names (PostgreSQL) and the SQLite message prefix for the membership keys
MEMBERSHIP_KEY_MARKERS = (
    "teamup_team_members_user_id_uniq",
    "teamup_team_members_pkey",
    "UNIQUE constraint failed: teamup_team_members",
)
SQLITE_BUSY_MARKERS = ("database is locked", "database table is locked", "database is busy")


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient(exc: Exception) -> bool:
    """True for lock and serialization failures worth another attempt."""
    if not isinstance(exc, DBAPIError):
        return False
    code = _sqlstate(exc)
    message = str(exc.orig)

    if isinstance(exc, IntegrityError):
        # Two first-time joins by the same user racing on the membership keys
        if code is not None and code != UNIQUE_VIOLATION:
            return False
        return any(marker in message for marker in MEMBERSHIP_KEY_MARKERS)
    if code in TRANSIENT_SQLSTATES:
        return True
    if isinstance(exc, OperationalError):
        lowered = message.lower()
        return any(marker in lowered for marker in SQLITE_BUSY_MARKERS)
    return False


def is_foreign_key_violation(exc: DBAPIError) -> bool:
    return isinstance(exc, IntegrityError) and (
        _sqlstate(exc) == FOREIGN_KEY_VIOLATION or "FOREIGN KEY constraint failed" in str(exc.orig)
    )


async def _run_attempts(
    session_factory: sessionmaker,
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    action: str,
    user_id: str,
    max_attempts: int,
    lock_timeout_ms: int,
    backoff_seconds: float,
) -> T:
    attempt = 0
    while True:
        attempt += 1
        try:
            async with session_factory() as session:
                async with session.begin():
                    if session.get_bind().dialect.name == "postgresql":
                        await session.execute(text(f"SET LOCAL lock_timeout = '{int(lock_timeout_ms)}ms'"))
                    return await operation(session)
        except DBAPIError as exc:
            if is_foreign_key_violation(exc):
                # The caller's user row is gone (deleted after authentication)
                log.warning("coordinator.user_missing", action=action, user_id=user_id)
                raise Unauthenticated("User not found") from exc
            if not is_transient(exc):
                raise
            if attempt >= max_attempts:
                log.warning("coordinator.gave_up", action=action, user_id=user_id, attempts=attempt)
                raise LockContention() from exc
            log.info(
                "coordinator.retry",
                action=action,
                user_id=user_id,
                attempt=attempt,
                error=type(exc).__name__,
            )
            await asyncio.sleep(backoff_seconds * attempt)


async def join_team(
    session_factory: sessionmaker,
    user: User,
    team_id: str,
    *,
    max_attempts: Optional[int] = None,
    lock_timeout_ms: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
) -> str:
    """Put ``user`` on ``team_id``. Returns the team id.

    Re-joining the team the user is already on is a successful no-op.
    """
    settings = get_settings()
    role = RoleCategory(user.role_category)

    async def attempt(session: AsyncSession) -> str:
        membership = await get_membership(session, user.id, for_update=True)
        if membership is not None:
            if membership.team_id == team_id:
                return team_id
            raise AlreadyOnAnotherTeam(membership.team_id)

        team = await get_team(session, team_id, for_update=True)
        if team is None:
            raise TeamNotFound(team_id=team_id)
        if team.status == TeamStatus.LOCKED.value:
            raise TeamLocked(team_id=team_id)

        check = check_composition(team.counts(), role, settings.team_capacity)
        if not check.ok:
            log.info("team.join_rejected", team_id=team_id, user_id=str(user.id), reason=check.reason)
            raise CompositionViolation(check.reason, team_id=team_id)

        session.add(TeamMember(team_id=team_id, user_id=user.id, role_category=role.value))
        team.apply_counts(check.next)
        session.add(team)
        await session.flush()

        log.info("team.joined", team_id=team_id, user_id=str(user.id), member_count=check.next.total)
        return team_id

    return await _run_attempts(
        session_factory,
        attempt,
        action="join",
        user_id=str(user.id),
        max_attempts=max_attempts or settings.join_max_attempts,
        lock_timeout_ms=lock_timeout_ms or settings.lock_timeout_ms,
        backoff_seconds=settings.join_retry_backoff_seconds if backoff_seconds is None else backoff_seconds,
    )


async def leave_team(
    session_factory: sessionmaker,
    user: User,
    *,
    max_attempts: Optional[int] = None,
    lock_timeout_ms: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
) -> Optional[str]:
    """Take ``user`` off their team. Returns the team left, or None."""
    settings = get_settings()

    async def attempt(session: AsyncSession) -> Optional[str]:
        membership = await get_membership(session, user.id, for_update=True)
        if membership is None:
            return None

        team_id = membership.team_id
        team = await get_team(session, team_id, for_update=True)
        if team is None:
            # Orphaned row; nothing to decrement
            await session.delete(membership)
            await session.flush()
            log.warning("team.orphan_membership_removed", team_id=team_id, user_id=str(user.id))
            return team_id
        if team.status == TeamStatus.LOCKED.value:
            raise TeamLocked(team_id=team_id)

        # Decrement by the role recorded at join time
        team.apply_counts(release_counts(team.counts(), RoleCategory(membership.role_category)))
        await session.delete(membership)
        session.add(team)
        await session.flush()

        log.info("team.left", team_id=team_id, user_id=str(user.id), member_count=team.member_count)
        return team_id

    return await _run_attempts(
        session_factory,
        attempt,
        action="leave",
        user_id=str(user.id),
        max_attempts=max_attempts or settings.join_max_attempts,
        lock_timeout_ms=lock_timeout_ms or settings.lock_timeout_ms,
        backoff_seconds=settings.join_retry_backoff_seconds if backoff_seconds is None else backoff_seconds,
    )
