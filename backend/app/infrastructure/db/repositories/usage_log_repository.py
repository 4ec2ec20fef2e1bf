"""
Usage Log Repository

Append-only usage history per user.
"""

from sqlalchemy import select

from app.domain.billing import PlanTier
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.models.usage_log import UsageLog
from app.infrastructure.db.repositories.base_repository import BaseRepository


class UsageLogRepository(BaseRepository[UsageLog]):
    """Repository for usage ledger entries."""

    def __init__(self, db: DatabaseManager):
        super().__init__(UsageLog, db)

    async def record(
        self,
        user_id: str,
        analysis_id: str | None,
        plan: PlanTier,
    ) -> UsageLog:
        return await self.add(
            UsageLog(user_id=user_id, analysis_id=analysis_id, plan_at_time=plan.value)
        )

    async def get_by_user(self, user_id: str, limit: int = 100) -> list[UsageLog]:
        """Latest entries for a user, newest first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(UsageLog)
                .where(UsageLog.user_id == user_id)
                .order_by(UsageLog.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
