"""
Analysis Repository

Data access for analysis records. All status changes go through
``transition``: a single ``UPDATE ... WHERE id = :id AND status = :expected``
whose affected-row count decides who won.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from app.domain.analysis import AnalysisStatus, can_transition
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.models.analysis import Analysis
from app.infrastructure.db.models.base import utcnow
from app.infrastructure.db.repositories.base_repository import BaseRepository


logger = logging.getLogger(__name__)

_GUARDED_COLUMNS = {"id", "status", "updated_at", "created_at", "user_id", "tier"}


class AnalysisRepository(BaseRepository[Analysis]):
    """Repository for Analysis records and their conditional transitions."""

    def __init__(self, db: DatabaseManager):
        super().__init__(Analysis, db)

    # =========================================================================
    # Conditional updates
    # =========================================================================

    async def transition(
        self,
        analysis_id: str,
        expected: AnalysisStatus,
        target: AnalysisStatus,
        updated_before: Optional[datetime] = None,
        **values: Any,
    ) -> bool:
        """
        Move ``analysis_id`` from ``expected`` to ``target`` if it is still
        at ``expected``.

        Args:
            analysis_id: Record to update
            expected: Status the caller believes the record is in
            target: New status
            updated_before: Extra guard, only match rows last touched before this
            **values: Additional columns written in the same statement

        Returns:
            True if this call changed the row. False means another caller
            already moved it, or the store failed; either way the transition
            did not happen here.
        """
        if not can_transition(expected, target):
            raise ValueError(f"Illegal transition {expected.value} -> {target.value}")

        illegal = _GUARDED_COLUMNS.intersection(values)
        if illegal:
            raise ValueError(f"Columns not writable in a transition: {sorted(illegal)}")

        stmt = (
            update(Analysis)
            .where(Analysis.id == analysis_id)
            .where(Analysis.status == expected.value)
        )
        if updated_before is not None:
            stmt = stmt.where(Analysis.updated_at < updated_before)
        stmt = stmt.values(status=target.value, updated_at=utcnow(), **values)

        try:
            async with self._db.session() as session:
                result = await session.execute(stmt)
                applied = result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(
                f"Conditional update {expected.value}->{target.value} failed "
                f"for analysis {analysis_id}: {e}"
            )
            return False

        if applied:
            logger.info(f"Analysis {analysis_id}: {expected.value} -> {target.value}")
        else:
            logger.info(
                f"Analysis {analysis_id}: {expected.value} -> {target.value} "
                "not applied (already advanced)"
            )
        return applied

    async def get_status(self, analysis_id: str) -> Optional[AnalysisStatus]:
        """Re-read only the current status."""
        async with self._db.session() as session:
            result = await session.execute(
                select(Analysis.status).where(Analysis.id == analysis_id)
            )
            value = result.scalar_one_or_none()
            return AnalysisStatus(value) if value else None

    async def set_transaction_ref(self, analysis_id: str, transaction_id: str) -> bool:
        """Attach a gateway transaction id while the record is still pending."""
        async with self._db.session() as session:
            result = await session.execute(
                update(Analysis)
                .where(Analysis.id == analysis_id)
                .where(Analysis.status == AnalysisStatus.PENDING.value)
                .values(paddle_transaction_id=transaction_id, updated_at=utcnow())
            )
            return result.rowcount == 1

    async def store_transcript(self, analysis_id: str, transcript: str) -> bool:
        """Keep the transcript only while the record is processing."""
        async with self._db.session() as session:
            result = await session.execute(
                update(Analysis)
                .where(Analysis.id == analysis_id)
                .where(Analysis.status == AnalysisStatus.PROCESSING.value)
                .values(transcript=transcript, updated_at=utcnow())
            )
            return result.rowcount == 1

    async def complete(self, analysis_id: str, result: dict[str, Any]) -> bool:
        """processing -> completed, writing the result and clearing the transcript."""
        return await self.transition(
            analysis_id,
            AnalysisStatus.PROCESSING,
            AnalysisStatus.COMPLETED,
            result=result,
            transcript=None,
            processing_error=None,
        )

    async def fail(
        self,
        analysis_id: str,
        message: str,
        updated_before: Optional[datetime] = None,
    ) -> bool:
        """processing -> error, writing the sanitized message and clearing the transcript."""
        return await self.transition(
            analysis_id,
            AnalysisStatus.PROCESSING,
            AnalysisStatus.ERROR,
            updated_before=updated_before,
            processing_error=message,
            transcript=None,
        )

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[Analysis]:
        """Latest analyses for a user, newest first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(Analysis)
                .where(Analysis.user_id == user_id)
                .order_by(Analysis.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_created_since(self, user_id: str, since: datetime) -> list[Analysis]:
        """A user's analyses created at or after ``since``, oldest first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(Analysis)
                .where(Analysis.user_id == user_id)
                .where(Analysis.created_at >= since)
                .order_by(Analysis.created_at.asc())
            )
            return list(result.scalars().all())

    async def get_many(self, analysis_ids: list[str]) -> dict[str, Analysis]:
        if not analysis_ids:
            return {}
        async with self._db.session() as session:
            result = await session.execute(
                select(Analysis).where(Analysis.id.in_(analysis_ids))
            )
            return {a.id: a for a in result.scalars().all()}

    async def find_stale_processing(self, updated_before: datetime) -> list[Analysis]:
        """Records stuck in processing since before ``updated_before``."""
        async with self._db.session() as session:
            result = await session.execute(
                select(Analysis)
                .where(Analysis.status == AnalysisStatus.PROCESSING.value)
                .where(Analysis.updated_at < updated_before)
                .order_by(Analysis.updated_at.asc())
            )
            return list(result.scalars().all())
