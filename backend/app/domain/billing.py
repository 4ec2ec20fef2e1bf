"""
Billing Domain Models

Plan tiers, per-tier configuration and usage ledger DTOs.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.domain.prompts import (
    ANALYSIS_PROMPT_BASIC,
    ANALYSIS_PROMPT_PRO,
    ANALYSIS_PROMPT_SINGLE,
)


BILLING_CYCLE_DAYS = 30


class PlanTier(str, Enum):
    """Pricing plan levels. NONE means the user has not purchased anything."""
    NONE = "none"
    SINGLE = "single"
    BASIC = "basic"
    PRO = "pro"

    @property
    def is_subscription(self) -> bool:
        return self in (PlanTier.BASIC, PlanTier.PRO)


@dataclass(frozen=True)
class TierConfig:
    """Billing and AI request configuration for one tier."""
    analyses_limit: int
    model: str
    max_tokens: int
    system_prompt: str


TIER_CONFIG = {
    PlanTier.SINGLE: TierConfig(
        analyses_limit=0,
        model="gpt-4o-mini",
        max_tokens=4096,
        system_prompt=ANALYSIS_PROMPT_SINGLE,
    ),
    PlanTier.BASIC: TierConfig(
        analyses_limit=20,
        model="gpt-4o",
        max_tokens=6144,
        system_prompt=ANALYSIS_PROMPT_BASIC,
    ),
    PlanTier.PRO: TierConfig(
        analyses_limit=50,
        model="gpt-4o",
        max_tokens=8192,
        system_prompt=ANALYSIS_PROMPT_PRO,
    ),
}


def get_tier_config(tier: PlanTier) -> TierConfig:
    """Configuration for a purchasable tier; NONE falls back to SINGLE."""
    return TIER_CONFIG.get(tier, TIER_CONFIG[PlanTier.SINGLE])


def get_analyses_limit(tier: PlanTier) -> int:
    """Monthly analyses limit for a tier (0 for pay-per-use and none)."""
    config = TIER_CONFIG.get(tier)
    return config.analyses_limit if config else 0


def parse_tier(value: Optional[str]) -> Optional[PlanTier]:
    """Parse a gateway-supplied tier string, None if unknown."""
    try:
        return PlanTier(value) if value else None
    except ValueError:
        return None


# =============================================================================
# Usage Ledger DTOs
# =============================================================================

class QuotaStatus(BaseModel):
    """Result of a quota check."""
    allowed: bool
    plan: PlanTier
    used: int = 0
    limit: int = 0
    expired: bool = Field(
        default=False,
        description="The billing cycle had expired and was reset by this check",
    )


class ProfileResponse(BaseModel):
    """Response DTO for the caller's profile."""
    id: str
    email: Optional[str] = None
    plan: PlanTier
    analyses_used: int
    analyses_limit: int
    billing_cycle_start: datetime
    paddle_subscription_id: Optional[str] = None
    paddle_customer_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UsageLogEntry(BaseModel):
    id: str
    analysis_id: Optional[str]
    plan_at_time: PlanTier
    created_at: datetime
    file_name: Optional[str] = None
    status: Optional[str] = None


class UsageLogsResponse(BaseModel):
    logs: list[UsageLogEntry]


class DailyCount(BaseModel):
    date: str
    count: int


class MonthlyCount(BaseModel):
    month: str
    count: int


class UsageStatsResponse(BaseModel):
    daily: list[DailyCount]
    monthly: list[MonthlyCount]
    total: int


class CreateSubscriptionCheckoutRequest(BaseModel):
    """Request DTO for purchasing a plan."""
    tier: PlanTier = Field(..., description="Tier to purchase (single, basic or pro)")


class CheckoutResponse(BaseModel):
    """Response DTO for checkout transaction creation."""
    transactionId: str
