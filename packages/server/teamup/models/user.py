"""Registered attendee."""

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin


class User(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "teamup_users"

    name: str = Field(nullable=False, max_length=64)
    # External identifier (e-mail or employee id), trimmed and lower-cased
    identifier: str = Field(nullable=False, unique=True, index=True, max_length=128)
    role_category: str = Field(sa_type=sa.String(16), nullable=False)  # RND | PRODUCT | GROWTH | ROOT | FUNCTION
