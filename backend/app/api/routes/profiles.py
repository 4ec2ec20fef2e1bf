"""
Profile Routes

Idempotent profile creation on first sign-in and profile lookup.
"""

import logging

from fastapi import APIRouter

from app.api.dependencies import CurrentUser, CurrentUserId, UserProfileRepoDep
from app.domain.billing import ProfileResponse
from app.infrastructure.db.models import UserProfile, as_utc
from app.infrastructure.exceptions import NotFoundError


logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(profile: UserProfile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        email=profile.email,
        plan=profile.plan_enum,
        analyses_used=profile.analyses_used,
        analyses_limit=profile.analyses_limit,
        billing_cycle_start=as_utc(profile.billing_cycle_start),
        paddle_subscription_id=profile.paddle_subscription_id,
        paddle_customer_id=profile.paddle_customer_id,
        created_at=as_utc(profile.created_at),
        updated_at=as_utc(profile.updated_at),
    )


@router.post("/profile")
async def ensure_profile(user: CurrentUser, repo: UserProfileRepoDep):
    """Create the caller's profile (plan ``none``) if it does not exist yet."""
    _, created = await repo.get_or_create(user.id, user.email)
    return {"ok": True, "created": created}


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(user_id: CurrentUserId, repo: UserProfileRepoDep):
    profile = await repo.get_by_id(user_id)
    if profile is None:
        raise NotFoundError("Profile not found", resource="profile", resource_id=user_id)
    return _to_response(profile)
