"""
Usage Log Model

One row per recorded analysis usage, for the usage history view.
"""

from typing import Optional

from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin, new_id


class UsageLog(TimestampMixin, table=True):
    """Usage ledger entry."""

    __tablename__ = "usage_logs"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    user_id: str = Field(..., index=True, max_length=64)
    analysis_id: Optional[str] = Field(default=None, index=True, max_length=36)
    plan_at_time: str = Field(..., max_length=10)
