"""
Team composition policy.

Pure functions shared by the server (the enforcement point, evaluated against
durable counters under lock) and by clients (advisory checks against the
members that are currently online). Nothing here touches storage.

Rules for a team of capacity 5:
- RND >= 2, PRODUCT >= 1, GROWTH >= 1 once the team is full
- ROOT <= 1 at all times
- a join is refused early when the remaining seats can no longer cover the
  outstanding minimums
"""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from .schemas.common import RoleCategory

TEAM_CAPACITY = 5

# Minimum head-count per quota-bearing role, enforced when the team fills up
ROLE_MINIMUMS: dict[RoleCategory, int] = {
    RoleCategory.RND: 2,
    RoleCategory.PRODUCT: 1,
    RoleCategory.GROWTH: 1,
}

# Hard ceilings, enforced on every join
ROLE_MAXIMUMS: dict[RoleCategory, int] = {
    RoleCategory.ROOT: 1,
}

_COUNTER_FIELDS: dict[RoleCategory, str] = {
    RoleCategory.RND: "rnd",
    RoleCategory.PRODUCT: "product",
    RoleCategory.GROWTH: "growth",
    RoleCategory.ROOT: "root",
}


class TeamCounts(BaseModel):
    """Composition counters of one team."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    rnd: int = 0
    product: int = 0
    growth: int = 0
    root: int = 0

    def for_role(self, role: RoleCategory) -> int:
        field = _COUNTER_FIELDS.get(RoleCategory(role))
        return getattr(self, field) if field else 0

    def __add__(self, other: "TeamCounts") -> "TeamCounts":
        return TeamCounts(
            total=self.total + other.total,
            rnd=self.rnd + other.rnd,
            product=self.product + other.product,
            growth=self.growth + other.growth,
            root=self.root + other.root,
        )

    def floored_sub(self, other: "TeamCounts") -> "TeamCounts":
        """Subtract counter-wise, never going below zero."""
        return TeamCounts(
            total=max(0, self.total - other.total),
            rnd=max(0, self.rnd - other.rnd),
            product=max(0, self.product - other.product),
            growth=max(0, self.growth - other.growth),
            root=max(0, self.root - other.root),
        )


class CompositionCheck(BaseModel):
    """Outcome of evaluating a hypothetical join."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    next: TeamCounts
    reason: Optional[str] = None


def role_delta(role: RoleCategory) -> TeamCounts:
    """Counter delta contributed by one member of ``role``.

    FUNCTION members take a seat but carry no quota counter.
    """
    role = RoleCategory(role)
    field = _COUNTER_FIELDS.get(role)
    if field is None:
        return TeamCounts(total=1)
    return TeamCounts(total=1, **{field: 1})


def shortfalls(counts: TeamCounts) -> dict[RoleCategory, int]:
    """Unmet minimums per role, omitting roles already satisfied."""
    result: dict[RoleCategory, int] = {}
    for role, minimum in ROLE_MINIMUMS.items():
        missing = max(0, minimum - counts.for_role(role))
        if missing:
            result[role] = missing
    return result


def _describe(missing: dict[RoleCategory, int]) -> str:
    return ", ".join(f"{count} more {role.value}" for role, count in missing.items())


def check_composition(
    current: TeamCounts,
    role: RoleCategory,
    capacity: int = TEAM_CAPACITY,
) -> CompositionCheck:
    """Decide whether a member of ``role`` may join a team at ``current``."""
    role = RoleCategory(role)
    nxt = current + role_delta(role)

    if nxt.total > capacity:
        return CompositionCheck(ok=False, next=nxt, reason=f"Team is full ({capacity} members max)")

    for limited, ceiling in ROLE_MAXIMUMS.items():
        if nxt.for_role(limited) > ceiling:
            return CompositionCheck(
                ok=False,
                next=nxt,
                reason=f"{limited.value} members must be spread out ({ceiling} per team max)",
            )

    missing = shortfalls(nxt)
    need = sum(missing.values())
    slots = capacity - nxt.total

    if need > slots:
        return CompositionCheck(
            ok=False,
            next=nxt,
            reason=(
                f"Team could no longer meet its composition: still needs {_describe(missing)} "
                f"but only {slots} seat(s) would remain"
            ),
        )

    if nxt.total == capacity and need != 0:
        return CompositionCheck(
            ok=False,
            next=nxt,
            reason=f"A full team must meet its composition: still needs {_describe(missing)}",
        )

    return CompositionCheck(ok=True, next=nxt)


def release_counts(current: TeamCounts, role: RoleCategory) -> TeamCounts:
    """Counters after a member of ``role`` leaves, floored at zero."""
    return current.floored_sub(role_delta(role))


def counts_from_members(
    members: Iterable[tuple[str, RoleCategory]],
    online_user_ids: Optional[set[str]] = None,
) -> TeamCounts:
    """Aggregate counters from ``(user_id, role)`` pairs.

    With ``online_user_ids`` only currently connected members are counted.
    """
    counts = TeamCounts()
    for user_id, role in members:
        if online_user_ids is not None and str(user_id) not in online_user_ids:
            continue
        counts = counts + role_delta(role)
    return counts


def advise_join(
    members: Iterable[tuple[str, RoleCategory]],
    role: RoleCategory,
    online_user_ids: Optional[set[str]] = None,
    capacity: int = TEAM_CAPACITY,
) -> CompositionCheck:
    """Advisory check for clients rendering the lobby.

    Not an enforcement point: the server always re-checks against durable
    counters under lock.
    """
    return check_composition(counts_from_members(members, online_user_ids), role, capacity)
