"""Team with denormalized composition counters."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from teamup_shared.composition import TeamCounts

from .base import CreatedAtMixin


class Team(CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "teamup_teams"

    id: str = Field(primary_key=True, max_length=16)  # T01..T30
    name: Optional[str] = Field(default=None, max_length=32)
    status: str = Field(default="forming", nullable=False, index=True)  # forming | locked
    locked_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))

    # Cached aggregate of teamup_team_members rows; written only by the coordinator
    member_count: int = Field(default=0, nullable=False)
    rnd_count: int = Field(default=0, nullable=False)
    product_count: int = Field(default=0, nullable=False)
    growth_count: int = Field(default=0, nullable=False)
    root_count: int = Field(default=0, nullable=False)

    def counts(self) -> TeamCounts:
        return TeamCounts(
            total=self.member_count,
            rnd=self.rnd_count,
            product=self.product_count,
            growth=self.growth_count,
            root=self.root_count,
        )

    def apply_counts(self, counts: TeamCounts) -> None:
        self.member_count = counts.total
        self.rnd_count = counts.rnd
        self.product_count = counts.product
        self.growth_count = counts.growth
        self.root_count = counts.root
