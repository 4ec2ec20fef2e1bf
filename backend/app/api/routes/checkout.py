"""
Checkout Routes

Create Paddle transactions for the overlay checkout.
"""

from fastapi import APIRouter

from app.api.dependencies import CheckoutDep, CurrentUserId
from app.domain.analysis import AnalysisIdRequest
from app.domain.billing import CheckoutResponse, CreateSubscriptionCheckoutRequest


router = APIRouter()


@router.post("/checkout/analysis", response_model=CheckoutResponse)
async def create_analysis_checkout(
    request: AnalysisIdRequest,
    user_id: CurrentUserId,
    checkout: CheckoutDep,
):
    """Pay for one pending analysis."""
    return await checkout.create_analysis_checkout(user_id, request.analysisId)


@router.post("/checkout/subscription", response_model=CheckoutResponse)
async def create_subscription_checkout(
    request: CreateSubscriptionCheckoutRequest,
    user_id: CurrentUserId,
    checkout: CheckoutDep,
):
    """
    Purchase a plan.

    ``basic`` and ``pro`` are monthly subscriptions; ``single`` activates
    pay-per-use.
    """
    return await checkout.create_plan_checkout(user_id, request.tier)
