"""
SQLModel ORM Models for ContractEar

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from app.infrastructure.db.models.base import (
    TimestampMixin,
    as_utc,
    new_id,
    utcnow,
)
from app.infrastructure.db.models.analysis import Analysis
from app.infrastructure.db.models.user_profile import UserProfile
from app.infrastructure.db.models.usage_log import UsageLog


__all__ = [
    # Base
    "TimestampMixin",
    "as_utc",
    "new_id",
    "utcnow",
    # Tables
    "Analysis",
    "UserProfile",
    "UsageLog",
]
