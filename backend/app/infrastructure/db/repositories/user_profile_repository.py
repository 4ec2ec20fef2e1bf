"""
UserProfile Repository for ContractEar

Profile lookups plus the single-statement updates used by the usage
ledger and the payment webhook.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from app.domain.billing import PlanTier
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.models.base import utcnow
from app.infrastructure.db.models.user_profile import UserProfile
from app.infrastructure.db.repositories.base_repository import BaseRepository
from app.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)


class UserProfileRepository(BaseRepository[UserProfile]):
    """
    Repository for UserProfile records.

    Extends base repository with profile-specific operations:
    - get_or_create: idempotent creation on first authenticated request
    - reset_cycle / increment_usage: usage ledger writes
    - apply_plan / cancel_by_customer / consume_single: billing writes
    """

    def __init__(self, db: DatabaseManager):
        super().__init__(UserProfile, db)

    async def get_or_create(
        self,
        user_id: str,
        email: Optional[str] = None,
    ) -> Tuple[UserProfile, bool]:
        """
        Get existing profile or create one with plan ``none``.

        A concurrent creator winning the insert is treated as "exists".

        Returns:
            Tuple of (UserProfile, was_created)
        """
        existing = await self.get_by_id(user_id)
        if existing:
            return existing, False

        now = utcnow()
        profile = UserProfile(
            id=user_id,
            email=email,
            plan=PlanTier.NONE.value,
            analyses_used=0,
            analyses_limit=0,
            billing_cycle_start=now,
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self.add(profile)
            logger.info(f"Created profile for user {user_id}")
            return created, True
        except DatabaseError as e:
            if not isinstance(e.original_error, IntegrityError):
                raise
            existing = await self.get_by_id(user_id)
            if existing is None:
                raise
            return existing, False

    async def reset_cycle(
        self,
        user_id: str,
        previous_cycle_start: datetime,
        now: datetime,
    ) -> bool:
        """
        Start a new billing cycle if nobody else already did.

        Guarded on the cycle start the caller observed, so concurrent
        checks reset at most once.
        """
        async with self._db.session() as session:
            result = await session.execute(
                update(UserProfile)
                .where(UserProfile.id == user_id)
                .where(UserProfile.billing_cycle_start == previous_cycle_start)
                .values(analyses_used=0, billing_cycle_start=now, updated_at=now)
            )
            return result.rowcount == 1

    async def increment_usage(self, user_id: str) -> bool:
        """Add one to ``analyses_used`` in a single statement."""
        async with self._db.session() as session:
            result = await session.execute(
                update(UserProfile)
                .where(UserProfile.id == user_id)
                .values(
                    analyses_used=UserProfile.analyses_used + 1,
                    updated_at=utcnow(),
                )
            )
            return result.rowcount == 1

    async def apply_plan(
        self,
        user_id: str,
        tier: PlanTier,
        analyses_limit: int,
        subscription_id: Optional[str],
        customer_id: Optional[str],
    ) -> bool:
        """
        Overwrite plan, limit and usage cycle (last writer wins).

        Returns:
            False if the profile does not exist
        """
        now = utcnow()
        async with self._db.session() as session:
            result = await session.execute(
                update(UserProfile)
                .where(UserProfile.id == user_id)
                .values(
                    plan=tier.value,
                    analyses_limit=analyses_limit,
                    analyses_used=0,
                    billing_cycle_start=now,
                    paddle_subscription_id=subscription_id,
                    paddle_customer_id=customer_id,
                    updated_at=now,
                )
            )
            return result.rowcount == 1

    async def cancel_by_customer(self, customer_id: str) -> int:
        """Reset every profile linked to a gateway customer to plan ``none``."""
        async with self._db.session() as session:
            result = await session.execute(
                update(UserProfile)
                .where(UserProfile.paddle_customer_id == customer_id)
                .values(
                    plan=PlanTier.NONE.value,
                    analyses_limit=0,
                    paddle_subscription_id=None,
                    updated_at=utcnow(),
                )
            )
            return result.rowcount

    async def consume_single(self, user_id: str) -> bool:
        """
        Reset a pay-per-use profile to plan ``none``.

        Only applies while the profile is still on ``single``; a plan bought
        in the meantime is left alone.
        """
        async with self._db.session() as session:
            result = await session.execute(
                update(UserProfile)
                .where(UserProfile.id == user_id)
                .where(UserProfile.plan == PlanTier.SINGLE.value)
                .values(plan=PlanTier.NONE.value, updated_at=utcnow())
            )
            return result.rowcount == 1
