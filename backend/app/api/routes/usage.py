"""
Usage Routes

Read-only quota, history and statistics for the caller.
"""

from fastapi import APIRouter

from app.api.dependencies import CurrentUserId, UsageLedgerDep, UsageReportsDep
from app.domain.billing import QuotaStatus, UsageLogsResponse, UsageStatsResponse


router = APIRouter()


@router.get("/usage", response_model=QuotaStatus)
async def get_usage(user_id: CurrentUserId, ledger: UsageLedgerDep):
    """Current quota; an expired billing cycle is reset by this call."""
    return await ledger.check_quota(user_id)


@router.get("/usage/logs", response_model=UsageLogsResponse)
async def get_usage_logs(user_id: CurrentUserId, reports: UsageReportsDep):
    return await reports.usage_logs(user_id)


@router.get("/usage/stats", response_model=UsageStatsResponse)
async def get_usage_stats(user_id: CurrentUserId, reports: UsageReportsDep):
    return await reports.usage_stats(user_id)
