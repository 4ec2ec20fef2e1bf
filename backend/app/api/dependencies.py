"""
API Dependencies

FastAPI dependency injection for authentication and the service container.

Security: JWT tokens are verified cryptographically using Supabase JWKS (ES256)
with HS256 fallback via the JWT secret. Never decode without verification.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Optional

import jwt
from jwt import PyJWKClient
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config.settings import Settings, get_settings
from app.services.analysis_lifecycle import AnalysisStateMachine
from app.services.checkout import CheckoutService
from app.services.container import ServiceContainer
from app.services.remote_audio import RemoteAudioFetcher
from app.services.usage_ledger import UsageLedger
from app.services.usage_reports import UsageReports
from app.infrastructure.db.repositories import UserProfileRepository
from app.infrastructure.exceptions import UnauthorizedError


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: Optional[str] = None


@lru_cache(maxsize=4)
def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    """PyJWKClient per JWKS URL; it caches keys and refreshes them itself."""
    return PyJWKClient(jwks_url, cache_keys=True)


def _decode_with_jwks(token: str, supabase_url: str, issuer: str) -> dict:
    """Verify JWT using Supabase JWKS endpoint (ES256 asymmetric keys)."""
    client = _get_jwks_client(f"{supabase_url}/auth/v1/.well-known/jwks.json")
    signing_key = client.get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["ES256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def _decode_with_secret(token: str, secret: str, issuer: str) -> dict:
    """Verify JWT using HS256 symmetric secret (legacy Supabase signing)."""
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def _verify_token(token: str, settings: Settings) -> dict:
    """
    Verify a Supabase JWT and return its claims.

    Verification strategy (in order):
      1. JWKS (ES256), preferred, supports key rotation automatically.
      2. HS256 with ``SUPABASE_JWT_SECRET``, fallback for legacy signing.

    Raises:
        UnauthorizedError: token expired, invalid or unverifiable.
    """
    issuer = f"{settings.supabase_url}/auth/v1"
    payload: Optional[dict] = None

    # --- Strategy 1: JWKS (ES256) ---
    if settings.supabase_url:
        try:
            payload = _decode_with_jwks(token, settings.supabase_url, issuer)
        except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as jwks_err:
            logger.debug("JWKS verification failed, trying HS256 fallback: %s", jwks_err)

    # --- Strategy 2: HS256 fallback ---
    if payload is None and settings.supabase_jwt_secret:
        try:
            payload = _decode_with_secret(token, settings.supabase_jwt_secret, issuer)
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.warning("HS256 JWT verification also failed: %s", e)

    if payload is None:
        raise UnauthorizedError("Invalid or unverifiable token")

    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthUser:
    """
    Authenticated caller from the bearer token.

    Raises:
        UnauthorizedError: token missing, expired, or invalid.
    """
    if not credentials:
        raise UnauthorizedError("Missing authorization token")

    payload = _verify_token(credentials.credentials, get_settings())

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token: missing user ID")

    return AuthUser(id=user_id, email=payload.get("email"))


async def get_current_user_id(user: AuthUser = Depends(get_current_user)) -> str:
    """Authenticated user ID (``sub`` claim)."""
    return user.id


# =============================================================================
# Service container providers
# Routers take their collaborators from here; tests override these.
# =============================================================================

def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_state_machine(
    container: ServiceContainer = Depends(get_container),
) -> AnalysisStateMachine:
    return container.state_machine


def get_checkout_service(
    container: ServiceContainer = Depends(get_container),
) -> CheckoutService:
    return container.checkout


def get_usage_ledger(
    container: ServiceContainer = Depends(get_container),
) -> UsageLedger:
    return container.ledger


def get_usage_reports(
    container: ServiceContainer = Depends(get_container),
) -> UsageReports:
    return container.reports


def get_user_profile_repository(
    container: ServiceContainer = Depends(get_container),
) -> UserProfileRepository:
    return container.profiles


def get_remote_audio_fetcher(
    container: ServiceContainer = Depends(get_container),
) -> RemoteAudioFetcher:
    return container.remote_audio


# Type aliases for route signatures
CurrentUser = Annotated[AuthUser, Depends(get_current_user)]
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
ContainerDep = Annotated[ServiceContainer, Depends(get_container)]
StateMachineDep = Annotated[AnalysisStateMachine, Depends(get_state_machine)]
CheckoutDep = Annotated[CheckoutService, Depends(get_checkout_service)]
UsageLedgerDep = Annotated[UsageLedger, Depends(get_usage_ledger)]
UsageReportsDep = Annotated[UsageReports, Depends(get_usage_reports)]
UserProfileRepoDep = Annotated[UserProfileRepository, Depends(get_user_profile_repository)]
RemoteAudioDep = Annotated[RemoteAudioFetcher, Depends(get_remote_audio_fetcher)]
