"""
Security Test Suite: JWT Authentication

Tests that the centralized JWT verification in dependencies.py correctly:
- Rejects missing Authorization headers
- Rejects malformed tokens
- Rejects expired tokens
- Rejects tokens with invalid signatures
- Accepts properly signed tokens (HS256 fallback, JWKS unreachable)
"""

import time
from unittest.mock import patch

import jwt
import pytest
from fastapi import FastAPI, Depends
from fastapi.testclient import TestClient

from app.api.dependencies import AuthUser, get_current_user, get_current_user_id
from app.infrastructure.exceptions import ContractEarError
from app.main import contractear_error_handler


def make_token(settings, user_id="user-1", expires_in=3600, email=None):
    payload = {
        "sub": user_id,
        "email": email,
        "aud": "authenticated",
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")


# ---------------------------------------------------------------------------
# Minimal app that uses the real dependency
# ---------------------------------------------------------------------------

test_app = FastAPI()
test_app.add_exception_handler(ContractEarError, contractear_error_handler)


@test_app.get("/protected")
async def protected_endpoint(user_id: str = Depends(get_current_user_id)):
    return {"user_id": user_id}


@test_app.get("/whoami")
async def whoami(user: AuthUser = Depends(get_current_user)):
    return {"id": user.id, "email": user.email}


@pytest.fixture
def client(settings):
    with patch("app.api.dependencies.get_settings", return_value=settings):
        yield TestClient(test_app, raise_server_exceptions=False)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Tests: rejection scenarios
# ---------------------------------------------------------------------------


class TestJWTRejection:
    """Verify that invalid/missing JWTs are rejected with 401."""

    def test_no_auth_header(self, client):
        resp = client.get("/protected")
        assert resp.status_code == 401
        assert resp.json()["message"] == "Missing authorization token"

    def test_empty_bearer(self, client):
        resp = client.get("/protected", headers={"Authorization": "Bearer "})
        assert resp.status_code == 401

    def test_malformed_scheme(self, client):
        resp = client.get("/protected", headers={"Authorization": "Basic abc123"})
        assert resp.status_code == 401

    def test_garbage_token(self, client):
        resp = client.get("/protected", headers=bearer("not.a.jwt"))
        assert resp.status_code == 401

    def test_wrong_secret(self, client, settings):
        payload = {
            "sub": "00000000-0000-0000-0000-000000000001",
            "aud": "authenticated",
            "iss": f"{settings.supabase_url}/auth/v1",
            "exp": int(time.time()) + 3600,
        }
        token = jwt.encode(payload, "some-other-secret-that-is-long-enough", algorithm="HS256")
        assert client.get("/protected", headers=bearer(token)).status_code == 401

    def test_expired_token_hs256(self, client, settings):
        """An expired HS256 token (even with correct secret) must be rejected."""
        token = make_token(settings, expires_in=-60)
        resp = client.get("/protected", headers=bearer(token))
        assert resp.status_code == 401
        assert resp.json()["message"] == "Token has expired"

    def test_wrong_audience(self, client, settings):
        payload = {
            "sub": "user-1",
            "aud": "anon",
            "iss": f"{settings.supabase_url}/auth/v1",
            "exp": int(time.time()) + 3600,
        }
        token = jwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")
        assert client.get("/protected", headers=bearer(token)).status_code == 401

    def test_wrong_issuer(self, client, settings):
        payload = {
            "sub": "user-1",
            "aud": "authenticated",
            "iss": "https://evil.example.com/auth/v1",
            "exp": int(time.time()) + 3600,
        }
        token = jwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")
        assert client.get("/protected", headers=bearer(token)).status_code == 401

    def test_raw_uuid_rejected(self, client):
        """'Bearer <raw-uuid>' is not a token."""
        resp = client.get(
            "/protected",
            headers=bearer("00000000-0000-0000-0000-000000000001"),
        )
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Tests: acceptance scenarios
# ---------------------------------------------------------------------------


class TestJWTAcceptance:
    """Verify that valid JWTs are accepted."""

    def test_valid_hs256_token(self, client, settings):
        user_id = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"
        resp = client.get("/protected", headers=bearer(make_token(settings, user_id)))
        assert resp.status_code == 200
        assert resp.json()["user_id"] == user_id

    def test_email_claim_is_exposed(self, client, settings):
        token = make_token(settings, "user-9", email="user-9@example.com")
        resp = client.get("/whoami", headers=bearer(token))
        assert resp.json() == {"id": "user-9", "email": "user-9@example.com"}
