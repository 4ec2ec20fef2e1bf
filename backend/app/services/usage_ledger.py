"""
Usage Ledger

Per-user consumption against plan quotas on a rolling 30-day cycle.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.domain.billing import BILLING_CYCLE_DAYS, PlanTier, QuotaStatus
from app.infrastructure.db.models.base import as_utc, utcnow
from app.infrastructure.db.repositories import (
    UsageLogRepository,
    UserProfileRepository,
)
from app.infrastructure.exceptions import ContractEarError


logger = logging.getLogger(__name__)


class UsageLedger:
    """
    Quota checks and usage recording.

    ``check_quota`` and ``record_usage`` are not atomic together: two
    racing submissions may overshoot the limit by one.
    """

    def __init__(
        self,
        profiles: UserProfileRepository,
        usage_logs: UsageLogRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._profiles = profiles
        self._usage_logs = usage_logs
        self._clock = clock

    async def check_quota(self, user_id: str) -> QuotaStatus:
        """
        Decide whether ``user_id`` may submit another analysis.

        An expired billing cycle is reset as a side effect of the check.
        """
        profile = await self._profiles.get_by_id(user_id)
        if profile is None or profile.plan_enum == PlanTier.NONE:
            return QuotaStatus(allowed=False, plan=PlanTier.NONE)

        plan = profile.plan_enum

        # Pay-per-use: every analysis is billed separately
        if plan == PlanTier.SINGLE:
            return QuotaStatus(
                allowed=True, plan=plan, used=profile.analyses_used, limit=0
            )

        now = self._clock()
        if now - as_utc(profile.billing_cycle_start) >= timedelta(days=BILLING_CYCLE_DAYS):
            reset = await self._profiles.reset_cycle(
                user_id, profile.billing_cycle_start, now
            )
            logger.info(
                f"Billing cycle expired for user {user_id}"
                + ("" if reset else " (already reset concurrently)")
            )
            return QuotaStatus(
                allowed=True,
                plan=plan,
                used=0,
                limit=profile.analyses_limit,
                expired=True,
            )

        return QuotaStatus(
            allowed=profile.analyses_used < profile.analyses_limit,
            plan=plan,
            used=profile.analyses_used,
            limit=profile.analyses_limit,
        )

    async def record_usage(
        self,
        user_id: str,
        analysis_id: Optional[str],
        plan: PlanTier,
    ) -> None:
        """
        Count one analysis against the user's cycle and append a log entry.

        Best-effort: a failed write is logged and does not undo the
        transition that triggered it.
        """
        try:
            if not await self._profiles.increment_usage(user_id):
                logger.warning(f"No profile to record usage for user {user_id}")
                return
            await self._usage_logs.record(user_id, analysis_id, plan)
        except (ContractEarError, SQLAlchemyError) as e:
            logger.error(f"Failed to record usage for user {user_id}: {e}")
