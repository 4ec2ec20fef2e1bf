"""
Test configuration and fixtures for ContractEar.

Provides a per-test SQLite database, repositories, fakes for the
dispatcher and gateway, and an app wired around them.
"""

import time
from datetime import datetime
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import AuthUser, get_current_user
from app.config.settings import Settings
from app.domain.analysis import AnalysisStatus
from app.domain.billing import PlanTier, get_analyses_limit
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.models import Analysis, UserProfile, utcnow
from app.infrastructure.db.repositories import (
    AnalysisRepository,
    UsageLogRepository,
    UserProfileRepository,
)
from app.infrastructure.storage import InMemoryAudioStorage
from app.services.analysis_lifecycle import AnalysisStateMachine
from app.services.dispatcher import ProcessingJob, WorkDispatcher
from app.services.usage_ledger import UsageLedger


TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
WEBHOOK_SECRET = "pdl_ntfset_test_secret"


# =============================================================================
# Fakes
# =============================================================================

class RecordingDispatcher(WorkDispatcher):
    """Collects jobs instead of running them."""

    def __init__(self):
        self.jobs: list[ProcessingJob] = []

    async def enqueue(self, job: ProcessingJob) -> None:
        self.jobs.append(job)

    @property
    def analysis_ids(self) -> list[str]:
        return [job.analysis_id for job in self.jobs]


def make_gateway(paid: bool = True) -> MagicMock:
    """Stand-in for PaddleService as seen by the state machine."""
    gateway = MagicMock()
    gateway.verify_transaction = AsyncMock(return_value=paid)
    return gateway


# =============================================================================
# Settings / Database Fixtures
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        environment="testing",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        supabase_url="http://127.0.0.1:9",
        supabase_jwt_secret=TEST_JWT_SECRET,
        paddle_api_key="pdl_sdbx_apikey_test",
        paddle_webhook_secret=WEBHOOK_SECRET,
        paddle_price_id_single="pri_single",
        paddle_price_id_basic="pri_basic",
        paddle_price_id_pro="pri_pro",
        openai_api_key="sk-test-key",
        app_url="https://app.test",
    )


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def analyses(db) -> AnalysisRepository:
    return AnalysisRepository(db)


@pytest.fixture
def profiles(db) -> UserProfileRepository:
    return UserProfileRepository(db)


@pytest.fixture
def usage_logs(db) -> UsageLogRepository:
    return UsageLogRepository(db)


@pytest.fixture
def storage() -> InMemoryAudioStorage:
    return InMemoryAudioStorage()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def gateway() -> MagicMock:
    return make_gateway(paid=True)


@pytest.fixture
def ledger(profiles, usage_logs) -> UsageLedger:
    return UsageLedger(profiles, usage_logs)


@pytest.fixture
def state_machine(analyses, profiles, ledger, gateway, dispatcher, storage):
    return AnalysisStateMachine(
        analyses=analyses,
        profiles=profiles,
        ledger=ledger,
        gateway=gateway,
        dispatcher=dispatcher,
        storage=storage,
    )


# =============================================================================
# Seed Helpers
# =============================================================================

@pytest.fixture
def make_profile(profiles) -> Callable:
    async def _make(
        user_id: str = "user-1",
        plan: PlanTier = PlanTier.SINGLE,
        used: int = 0,
        limit: Optional[int] = None,
        cycle_start: Optional[datetime] = None,
        customer_id: Optional[str] = None,
    ) -> UserProfile:
        return await profiles.add(
            UserProfile(
                id=user_id,
                email=f"{user_id}@example.com",
                plan=plan.value,
                analyses_used=used,
                analyses_limit=get_analyses_limit(plan) if limit is None else limit,
                billing_cycle_start=cycle_start or utcnow(),
                paddle_customer_id=customer_id,
            )
        )
    return _make


@pytest.fixture
def make_analysis(analyses, storage) -> Callable:
    async def _make(
        user_id: str = "user-1",
        status: AnalysisStatus = AnalysisStatus.PENDING,
        tier: PlanTier = PlanTier.SINGLE,
        transaction_id: Optional[str] = "txn_1",
        updated_at: Optional[datetime] = None,
        **extra: Any,
    ) -> Analysis:
        record = Analysis(
            user_id=user_id,
            file_name="meeting.mp3",
            tier=tier.value,
            status=status.value,
            paddle_transaction_id=transaction_id,
            **extra,
        )
        record.audio_path = f"{record.id}/meeting.mp3"
        if updated_at is not None:
            record.updated_at = updated_at
        await storage.put(record.audio_path, b"ID3-fake-audio", "audio/mpeg")
        return await analyses.add(record)
    return _make


# =============================================================================
# App Fixtures
# =============================================================================

def make_token(
    settings: Settings,
    user_id: str = "user-1",
    expires_in: int = 3600,
    email: Optional[str] = "user-1@example.com",
) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "aud": "authenticated",
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")


def paddle_handler_factory(calls: list[httpx.Request], transaction_status: str = "completed"):
    """MockTransport handler emulating the Paddle transactions API."""
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.method == "POST" and request.url.path == "/transactions":
            return httpx.Response(201, json={"data": {"id": f"txn_{len(calls)}"}})
        if request.method == "GET" and request.url.path.startswith("/transactions/"):
            txn_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(
                200, json={"data": {"id": txn_id, "status": transaction_status}}
            )
        return httpx.Response(404, json={"error": {"code": "not_found"}})
    return handler


@pytest.fixture
def paddle_calls() -> list[httpx.Request]:
    return []


@pytest.fixture
def container(settings, storage, dispatcher, paddle_calls):
    from app.services.container import build_container

    gateway_client = httpx.AsyncClient(
        transport=httpx.MockTransport(paddle_handler_factory(paddle_calls)),
        base_url=settings.paddle_api_base,
    )
    ai_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        base_url=settings.openai_base_url,
    )
    return build_container(
        settings,
        storage=storage,
        dispatcher=dispatcher,
        gateway_client=gateway_client,
        ai_client=ai_client,
    )


@pytest.fixture
def app(settings, container):
    """FastAPI application wired to the test container."""
    from app.main import create_app
    return create_app(settings, container)


@pytest.fixture
def client(app):
    """Synchronous test client; runs the lifespan (creates the schema)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def mock_user_id() -> str:
    return "user-1"


@pytest.fixture
def auth_headers(settings, mock_user_id) -> dict:
    return {"Authorization": f"Bearer {make_token(settings, mock_user_id)}"}


@pytest.fixture
def as_user(app):
    """Authenticate requests as the given user without a token."""
    def _as(user_id: str = "user-1", email: Optional[str] = None) -> None:
        app.dependency_overrides[get_current_user] = lambda: AuthUser(id=user_id, email=email)
    yield _as
    app.dependency_overrides.clear()


@pytest.fixture
def run(client):
    """Run a coroutine function on the test client's event loop."""
    def _run(func: Callable, *args: Any) -> Any:
        return client.portal.call(func, *args)
    return _run


@pytest.fixture
def token_factory(settings) -> Callable[..., str]:
    def _token(user_id: str = "user-1", expires_in: int = 3600) -> str:
        return make_token(settings, user_id, expires_in)
    return _token
