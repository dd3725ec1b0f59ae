"""Membership ledger: user -> team, at most one row per user."""

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utc_timestamp


class TeamMember(SQLModel, table=True):
    __tablename__ = "teamup_team_members"
    __table_args__ = (
        sa.UniqueConstraint("user_id", name="teamup_team_members_user_id_uniq"),
    )

    team_id: str = Field(
        foreign_key="teamup_teams.id", primary_key=True, index=True, ondelete="CASCADE"
    )
    user_id: uuid.UUID = Field(
        foreign_key="teamup_users.id", primary_key=True, ondelete="CASCADE"
    )
    # Snapshot at join time; leave decrements by this, not the current profile role
    role_category: str = Field(sa_type=sa.String(16), nullable=False)
    joined_at: datetime = utc_timestamp()
