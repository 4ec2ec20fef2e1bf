"""
UserProfile Database Model

Plan, usage counters and gateway correlation ids for one user.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field

from app.domain.billing import PlanTier
from app.infrastructure.db.models.base import TimestampMixin, utcnow


class UserProfile(TimestampMixin, table=True):
    """
    UserProfile database table model.

    The primary key is the identity provider's user id (JWT ``sub``).
    """

    __tablename__ = "profiles"

    id: str = Field(..., primary_key=True, max_length=64)
    email: Optional[str] = Field(default=None, max_length=320)

    plan: str = Field(default=PlanTier.NONE.value, max_length=10)
    analyses_used: int = Field(default=0, ge=0)
    analyses_limit: int = Field(default=0, ge=0)
    billing_cycle_start: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
    )

    paddle_subscription_id: Optional[str] = Field(default=None, max_length=255)
    paddle_customer_id: Optional[str] = Field(default=None, index=True, max_length=255)

    @property
    def plan_enum(self) -> PlanTier:
        return PlanTier(self.plan)
