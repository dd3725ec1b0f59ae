"""Column mixins shared by the lobby tables. All timestamps are UTC."""

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp(**column_kwargs):
    """Timezone-aware timestamp column defaulting to now on both sides."""
    return Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now(), **column_kwargs},
        sa_type=sa.DateTime(timezone=True),
    )


class CreatedAtMixin(SQLModel):
    created_at: datetime = utc_timestamp()


class TimestampMixin(CreatedAtMixin):
    updated_at: datetime = utc_timestamp(onupdate=utcnow)


class UUIDMixin(SQLModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, nullable=False)
