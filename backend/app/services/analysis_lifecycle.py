"""
Analysis Lifecycle State Machine

Owns every status change of an analysis record:

    pending -> paid -> processing -> completed | error     (single tier)
                       processing -> completed | error     (subscriptions)

Submit, ConfirmPayment, webhook events and the worker race each other on
the same row with no shared memory. Every step that advances a status is a
conditional update guarded on the expected prior status; the caller whose
update changes the row owns the side effects (usage + enqueue). Every other
caller reports the latest status and does nothing else.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from app.domain.analysis import (
    AnalysisStatus,
    AnalysisStatusResponse,
    SourceType,
    SubmitResponse,
)
from app.domain.billing import PlanTier, QuotaStatus, get_analyses_limit, parse_tier
from app.infrastructure.db.models import Analysis, new_id, utcnow
from app.infrastructure.db.repositories import (
    AnalysisRepository,
    UserProfileRepository,
)
from app.infrastructure.exceptions import (
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    PaymentRequiredError,
    QuotaExceededError,
    StorageError,
    redact_secrets,
)
from app.infrastructure.payments.paddle_service import PaddleService
from app.infrastructure.storage import AudioStorage, build_storage_path
from app.services.dispatcher import ProcessingJob, WorkDispatcher
from app.services.usage_ledger import UsageLedger


logger = logging.getLogger(__name__)

STALE_PROCESSING_MESSAGE = "Processing timed out. Please submit the recording again."


@dataclass
class SubmittedAudio:
    """Validated audio handed to Submit by the upload or URL route."""
    data: bytes = field(repr=False)
    file_name: str
    content_type: str
    source_type: SourceType = SourceType.UPLOAD
    storage_name: Optional[str] = None


class AnalysisStateMachine:
    """
    Race-safe transitions for analysis records.

    All collaborators are injected; the machine holds no state of its own
    beyond them.
    """

    def __init__(
        self,
        analyses: AnalysisRepository,
        profiles: UserProfileRepository,
        ledger: UsageLedger,
        gateway: PaddleService,
        dispatcher: WorkDispatcher,
        storage: AudioStorage,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._analyses = analyses
        self._profiles = profiles
        self._ledger = ledger
        self._gateway = gateway
        self._dispatcher = dispatcher
        self._storage = storage
        self._clock = clock

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_owned(self, user_id: str, analysis_id: str) -> Analysis:
        """Load an analysis, enforcing that ``user_id`` owns it."""
        analysis = await self._analyses.get_by_id(analysis_id)
        if analysis is None:
            raise NotFoundError("Analysis not found", resource="analysis", resource_id=analysis_id)
        if analysis.user_id != user_id:
            raise ForbiddenError()
        return analysis

    async def get_status_view(self, analysis_id: str) -> AnalysisStatusResponse:
        """Public status poll."""
        analysis = await self._analyses.get_by_id(analysis_id)
        if analysis is None:
            raise NotFoundError("Analysis not found", resource="analysis", resource_id=analysis_id)

        status = analysis.status_enum
        error = None
        if status == AnalysisStatus.ERROR:
            error = redact_secrets(analysis.processing_error)

        return AnalysisStatusResponse(
            status=status,
            result=analysis.result if status == AnalysisStatus.COMPLETED else None,
            error=error,
            fileName=analysis.file_name,
            createdAt=analysis.created_at,
        )

    async def _current_status(self, analysis_id: str, fallback: AnalysisStatus) -> AnalysisStatus:
        status = await self._analyses.get_status(analysis_id)
        return status or fallback

    # =========================================================================
    # Submit
    # =========================================================================

    async def ensure_quota(self, user_id: str) -> QuotaStatus:
        """Quota check that raises QuotaExceededError when denied."""
        quota = await self._ledger.check_quota(user_id)
        if not quota.allowed:
            raise QuotaExceededError(quota.plan.value, quota.used, quota.limit)
        return quota

    async def submit(self, user_id: str, audio: SubmittedAudio) -> SubmitResponse:
        """
        Create an analysis for validated audio.

        Single tier: stored and inserted at ``pending`` awaiting payment.
        Subscription tiers: inserted at ``processing``, usage recorded and
        the worker enqueued with the bytes still in memory.

        Raises:
            QuotaExceededError if the plan does not allow another analysis
        """
        quota = await self.ensure_quota(user_id)
        tier = quota.plan
        analysis_id = new_id()
        storage_path = build_storage_path(analysis_id, audio.storage_name or audio.file_name)

        await self._storage.put(storage_path, audio.data, audio.content_type)

        initial = AnalysisStatus.PENDING if tier == PlanTier.SINGLE else AnalysisStatus.PROCESSING
        record = Analysis(
            id=analysis_id,
            user_id=user_id,
            file_name=audio.file_name,
            source_type=audio.source_type.value,
            audio_path=storage_path,
            tier=tier.value,
            status=initial.value,
        )

        try:
            await self._analyses.add(record)
        except DatabaseError:
            await self._discard_audio(storage_path)
            raise

        logger.info(f"Submitted analysis {analysis_id} for user {user_id} at {initial.value}")

        if tier.is_subscription:
            await self._ledger.record_usage(user_id, analysis_id, tier)
            await self._dispatcher.enqueue(
                ProcessingJob(
                    analysis_id=analysis_id,
                    audio=audio.data,
                    content_type=audio.content_type,
                )
            )

        return SubmitResponse(id=analysis_id, requiresPayment=tier == PlanTier.SINGLE)

    # =========================================================================
    # ConfirmPayment (client polling fallback)
    # =========================================================================

    async def confirm_payment(self, user_id: str, analysis_id: str) -> AnalysisStatus:
        """
        Verify payment with the gateway and start processing.

        Idempotent: records already past ``paid`` just report their status.

        Raises:
            NotFoundError, ForbiddenError
            PaymentRequiredError if there is no transaction or it is unpaid
            GatewayUnavailableError if the gateway cannot be reached
        """
        analysis = await self.get_owned(user_id, analysis_id)
        status = analysis.status_enum

        if status.is_terminal or status == AnalysisStatus.PROCESSING:
            return status

        if status == AnalysisStatus.PENDING:
            if not analysis.paddle_transaction_id:
                raise PaymentRequiredError()

            if not await self._gateway.verify_transaction(analysis.paddle_transaction_id):
                raise PaymentRequiredError()

            claimed = await self._analyses.transition(
                analysis_id, AnalysisStatus.PENDING, AnalysisStatus.PAID
            )
            if not claimed:
                current = await self._current_status(analysis_id, AnalysisStatus.PROCESSING)
                if current != AnalysisStatus.PAID:
                    logger.info(
                        f"Confirm for {analysis_id} lost pending->paid, now {current.value}"
                    )
                    return current

        return await self._start_processing(analysis)

    # =========================================================================
    # Webhook events
    # =========================================================================

    async def handle_webhook_event(self, event: dict[str, Any]) -> str:
        """
        Apply a verified gateway event.

        Never raises for business no-ops so the gateway always sees success
        for events that were already applied.

        Returns:
            Short outcome label used for logging and tests
        """
        event_type = event.get("event_type")
        data = event.get("data") or {}

        if event_type == "transaction.completed":
            custom_data = data.get("custom_data") or {}
            outcome = "ignored"

            if custom_data.get("analysis_id"):
                outcome = await self._on_analysis_paid(
                    str(custom_data["analysis_id"]), data.get("id")
                )

            if custom_data.get("tier") and custom_data.get("user_id"):
                outcome = await self._on_plan_purchased(
                    str(custom_data["user_id"]),
                    custom_data.get("tier"),
                    transaction_id=data.get("id"),
                    subscription_id=data.get("subscription_id"),
                    customer_id=data.get("customer_id"),
                )
            return outcome

        if event_type == "subscription.canceled":
            customer_id = data.get("customer_id")
            if not customer_id:
                return "ignored"
            count = await self._profiles.cancel_by_customer(customer_id)
            logger.info(f"Subscription canceled for customer {customer_id} ({count} profile(s))")
            return "plan_canceled"

        logger.debug(f"Unhandled event type: {event_type}")
        return "ignored"

    async def _on_analysis_paid(self, analysis_id: str, transaction_id: Optional[str]) -> str:
        analysis = await self._analyses.get_by_id(analysis_id)
        if analysis is None:
            logger.warning(f"Payment webhook for unknown analysis {analysis_id}")
            return "unknown_analysis"

        if analysis.status_enum != AnalysisStatus.PENDING:
            logger.info(f"Analysis {analysis_id} already {analysis.status}, skipping")
            return "already_advanced"

        values = {"paddle_transaction_id": transaction_id} if transaction_id else {}
        claimed = await self._analyses.transition(
            analysis_id, AnalysisStatus.PENDING, AnalysisStatus.PAID, **values
        )
        if not claimed:
            current = await self._current_status(analysis_id, AnalysisStatus.PROCESSING)
            if current != AnalysisStatus.PAID:
                logger.info(f"Analysis {analysis_id} advanced past pending concurrently, skipping")
                return "already_advanced"

        status = await self._start_processing(analysis)
        return "processing_started" if status == AnalysisStatus.PROCESSING else "already_advanced"

    async def _on_plan_purchased(
        self,
        user_id: str,
        tier_value: Optional[str],
        transaction_id: Optional[str],
        subscription_id: Optional[str],
        customer_id: Optional[str],
    ) -> str:
        tier = parse_tier(tier_value)
        if tier is None or tier == PlanTier.NONE:
            logger.warning(f"Plan webhook with unknown tier {tier_value!r} for user {user_id}")
            return "ignored"

        await self._profiles.get_or_create(user_id)
        await self._profiles.apply_plan(
            user_id,
            tier,
            analyses_limit=get_analyses_limit(tier),
            subscription_id=subscription_id or transaction_id,
            customer_id=customer_id,
        )
        logger.info(f"Profile {user_id} moved to plan {tier.value}")
        return "plan_updated"

    # =========================================================================
    # Shared paid -> processing hand-off
    # =========================================================================

    async def _start_processing(self, analysis: Analysis) -> AnalysisStatus:
        """
        Claim ``paid -> processing``. Only the winner records usage and
        enqueues the worker.
        """
        started = await self._analyses.transition(
            analysis.id, AnalysisStatus.PAID, AnalysisStatus.PROCESSING
        )
        if not started:
            return await self._current_status(analysis.id, AnalysisStatus.PROCESSING)

        await self._ledger.record_usage(analysis.user_id, analysis.id, analysis.tier_enum)
        await self._dispatcher.enqueue(ProcessingJob(analysis_id=analysis.id))
        return AnalysisStatus.PROCESSING

    # =========================================================================
    # Deletion and recovery
    # =========================================================================

    async def delete(self, user_id: str, analysis_id: str) -> None:
        """Owner-only deletion; stored audio is removed best-effort first."""
        analysis = await self.get_owned(user_id, analysis_id)
        if analysis.audio_path:
            await self._discard_audio(analysis.audio_path)
        await self._analyses.delete(analysis_id)
        logger.info(f"Deleted analysis {analysis_id}")

    async def reclaim_stale(self, older_than: timedelta) -> list[str]:
        """
        Move analyses stuck in ``processing`` since before ``now - older_than``
        to ``error``.

        Guarded on both the status and the stale timestamp, so a worker that
        is still making progress wins over the sweep.
        """
        cutoff = self._clock() - older_than
        reclaimed: list[str] = []

        for analysis in await self._analyses.find_stale_processing(cutoff):
            if not await self._analyses.fail(
                analysis.id, STALE_PROCESSING_MESSAGE, updated_before=cutoff
            ):
                continue
            reclaimed.append(analysis.id)
            if analysis.audio_path:
                await self._discard_audio(analysis.audio_path)
            if analysis.tier_enum == PlanTier.SINGLE:
                await self._profiles.consume_single(analysis.user_id)
            logger.warning(f"Reclaimed stale analysis {analysis.id}")

        return reclaimed

    async def _discard_audio(self, path: str) -> None:
        try:
            await self._storage.delete(path)
        except StorageError as e:
            logger.warning(f"Could not delete stored audio {path}: {e.message}")
