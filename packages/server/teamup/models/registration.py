"""Gathering RSVP and contest sign-up (one row per user each)."""

import uuid

from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, TimestampMixin


class GatheringRegistration(TimestampMixin, SQLModel, table=True):
    __tablename__ = "teamup_gathering_registrations"

    user_id: uuid.UUID = Field(foreign_key="teamup_users.id", primary_key=True, ondelete="CASCADE")
    attending: bool = Field(nullable=False)


class ContestRegistration(CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "teamup_contest_registrations"

    user_id: uuid.UUID = Field(foreign_key="teamup_users.id", primary_key=True, ondelete="CASCADE")
    status: str = Field(default="registered", nullable=False, max_length=24)
