"""
Service Container

Builds every long-lived service object once per process. The FastAPI
lifespan keeps the container on ``app.state``; scripts build their own.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.config.settings import Settings
from app.infrastructure.ai.openai_service import OpenAIService
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.repositories import (
    AnalysisRepository,
    UsageLogRepository,
    UserProfileRepository,
)
from app.infrastructure.exceptions import ConfigurationError
from app.infrastructure.payments import PaddleService
from app.infrastructure.storage import (
    AudioStorage,
    InMemoryAudioStorage,
    SupabaseAudioStorage,
)
from app.services.analysis_lifecycle import AnalysisStateMachine
from app.services.checkout import CheckoutService
from app.services.dispatcher import InProcessDispatcher, WorkDispatcher
from app.services.processing_worker import ProcessingWorker
from app.services.remote_audio import RemoteAudioFetcher
from app.services.usage_ledger import UsageLedger
from app.services.usage_reports import UsageReports


logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    db: DatabaseManager
    analyses: AnalysisRepository
    profiles: UserProfileRepository
    usage_logs: UsageLogRepository
    gateway: PaddleService
    ai: OpenAIService
    storage: AudioStorage
    dispatcher: WorkDispatcher
    ledger: UsageLedger
    state_machine: AnalysisStateMachine
    worker: ProcessingWorker
    checkout: CheckoutService
    remote_audio: RemoteAudioFetcher
    reports: UsageReports

    def start_workers(self) -> None:
        if isinstance(self.dispatcher, InProcessDispatcher):
            self.dispatcher.start(self.worker.process)

    async def close(self) -> None:
        if isinstance(self.dispatcher, InProcessDispatcher):
            await self.dispatcher.stop()
        await self.gateway.close()
        await self.ai.close()
        await self.remote_audio.close()
        await self.db.close()


def _default_storage(settings: Settings) -> AudioStorage:
    if settings.supabase_url and settings.supabase_service_role_key:
        return SupabaseAudioStorage(settings)
    if settings.is_production:
        raise ConfigurationError(
            "Audio storage is not configured",
            missing_keys=["SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"],
        )
    logger.warning("Supabase storage not configured, keeping audio in memory")
    return InMemoryAudioStorage()


def build_container(
    settings: Settings,
    *,
    db: Optional[DatabaseManager] = None,
    storage: Optional[AudioStorage] = None,
    dispatcher: Optional[WorkDispatcher] = None,
    gateway_client: Optional[httpx.AsyncClient] = None,
    ai_client: Optional[httpx.AsyncClient] = None,
    fetch_client: Optional[httpx.AsyncClient] = None,
) -> ServiceContainer:
    """
    Wire the object graph.

    Every keyword argument replaces one collaborator; tests use them to
    plug in fakes and mock transports.
    """
    db = db or DatabaseManager(settings)
    analyses = AnalysisRepository(db)
    profiles = UserProfileRepository(db)
    usage_logs = UsageLogRepository(db)

    gateway = PaddleService(settings, client=gateway_client)
    ai = OpenAIService(settings, http_client=ai_client)
    if storage is None:
        storage = _default_storage(settings)
    if dispatcher is None:
        dispatcher = InProcessDispatcher(settings.worker_concurrency)

    ledger = UsageLedger(profiles, usage_logs)
    state_machine = AnalysisStateMachine(
        analyses=analyses,
        profiles=profiles,
        ledger=ledger,
        gateway=gateway,
        dispatcher=dispatcher,
        storage=storage,
    )
    worker = ProcessingWorker(
        analyses=analyses,
        profiles=profiles,
        ai=ai,
        storage=storage,
        max_attempts=settings.ai_max_retries,
        base_delay=settings.ai_retry_base_delay,
    )

    return ServiceContainer(
        settings=settings,
        db=db,
        analyses=analyses,
        profiles=profiles,
        usage_logs=usage_logs,
        gateway=gateway,
        ai=ai,
        storage=storage,
        dispatcher=dispatcher,
        ledger=ledger,
        state_machine=state_machine,
        worker=worker,
        checkout=CheckoutService(settings, gateway, analyses, state_machine),
        remote_audio=RemoteAudioFetcher(
            max_bytes=settings.max_upload_bytes,
            timeout=settings.remote_fetch_timeout,
            client=fetch_client,
        ),
        reports=UsageReports(analyses, usage_logs),
    )
