"""
Usage Reports

Read-only summaries over the usage log and analysis history.
"""

from datetime import date, datetime, timedelta
from typing import Callable

from app.domain.analysis import AnalysisListResponse, AnalysisSummary
from app.domain.billing import (
    DailyCount,
    MonthlyCount,
    UsageLogEntry,
    UsageLogsResponse,
    UsageStatsResponse,
)
from app.infrastructure.db.models import as_utc, utcnow
from app.infrastructure.db.repositories import AnalysisRepository, UsageLogRepository


DAILY_WINDOW_DAYS = 30
MONTHLY_WINDOW_MONTHS = 12


def _shift_months(day: date, months: int) -> date:
    """First day of the month ``months`` away from ``day``'s month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def _month_key(day: date) -> str:
    return f"{day.year}-{day.month:02d}"


class UsageReports:
    def __init__(
        self,
        analyses: AnalysisRepository,
        usage_logs: UsageLogRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._analyses = analyses
        self._usage_logs = usage_logs
        self._clock = clock

    async def recent_analyses(self, user_id: str, limit: int = 50) -> AnalysisListResponse:
        records = await self._analyses.list_for_user(user_id, limit=limit)
        return AnalysisListResponse(
            analyses=[
                AnalysisSummary(
                    id=a.id,
                    fileName=a.file_name,
                    status=a.status_enum,
                    createdAt=as_utc(a.created_at),
                    result=a.result,
                )
                for a in records
            ]
        )

    async def usage_logs(self, user_id: str, limit: int = 100) -> UsageLogsResponse:
        """Latest usage entries joined with their analysis' name and status."""
        logs = await self._usage_logs.get_by_user(user_id, limit=limit)
        related = await self._analyses.get_many(
            [log.analysis_id for log in logs if log.analysis_id]
        )

        entries = []
        for log in logs:
            analysis = related.get(log.analysis_id) if log.analysis_id else None
            entries.append(
                UsageLogEntry(
                    id=log.id,
                    analysis_id=log.analysis_id,
                    plan_at_time=log.plan_at_time,
                    created_at=as_utc(log.created_at),
                    file_name=analysis.file_name if analysis else None,
                    status=analysis.status if analysis else None,
                )
            )
        return UsageLogsResponse(logs=entries)

    async def usage_stats(self, user_id: str) -> UsageStatsResponse:
        """
        Daily counts for the last 30 days, monthly counts for the last 12
        months, and the 12-month total. Buckets are UTC calendar days.
        """
        now = self._clock()
        today = now.date()
        first_month = _shift_months(today, -(MONTHLY_WINDOW_MONTHS - 1))
        since = now - timedelta(days=365)

        daily = {
            (today - timedelta(days=offset)).isoformat(): 0
            for offset in range(DAILY_WINDOW_DAYS - 1, -1, -1)
        }
        monthly = {
            _month_key(_shift_months(first_month, offset)): 0
            for offset in range(MONTHLY_WINDOW_MONTHS)
        }

        records = await self._analyses.list_created_since(user_id, since)
        for analysis in records:
            created = as_utc(analysis.created_at).date()
            day_key = created.isoformat()
            month_key = _month_key(created)
            if day_key in daily:
                daily[day_key] += 1
            if month_key in monthly:
                monthly[month_key] += 1

        return UsageStatsResponse(
            daily=[DailyCount(date=k, count=v) for k, v in daily.items()],
            monthly=[MonthlyCount(month=k, count=v) for k, v in monthly.items()],
            total=len(records),
        )
