"""
Base Model for SQLModel ORM

Provides common fields and behavior for all database models.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    return str(uuid4())


class TimestampMixin(SQLModel):
    """
    Mixin providing timestamp fields for models.

    ``updated_at`` is bumped explicitly by every repository write so that
    bulk UPDATE statements keep it current as well.
    """

    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
        description="Record creation timestamp (UTC)"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
        description="Last update timestamp (UTC)"
    )
