"""
Checkout Service

Creates gateway transactions for a single pending analysis or for a plan
purchase. Payment completion arrives later through the webhook or the
confirm-payment poll.
"""

import logging

from app.config.settings import Settings
from app.domain.analysis import AnalysisStatus
from app.domain.billing import CheckoutResponse, PlanTier
from app.infrastructure.db.repositories import AnalysisRepository
from app.infrastructure.exceptions import ValidationError
from app.infrastructure.payments.paddle_service import PaddleService
from app.services.analysis_lifecycle import AnalysisStateMachine


logger = logging.getLogger(__name__)


class CheckoutService:
    def __init__(
        self,
        settings: Settings,
        gateway: PaddleService,
        analyses: AnalysisRepository,
        state_machine: AnalysisStateMachine,
    ):
        self._app_url = settings.app_url.rstrip("/")
        self._gateway = gateway
        self._analyses = analyses
        self._state_machine = state_machine

    async def create_analysis_checkout(self, user_id: str, analysis_id: str) -> CheckoutResponse:
        """
        Open a pay-per-use transaction for a pending analysis the caller owns.

        The transaction id is stored on the record so confirm-payment can
        re-verify it with the gateway.
        """
        analysis = await self._state_machine.get_owned(user_id, analysis_id)
        if analysis.status_enum != AnalysisStatus.PENDING:
            raise ValidationError(
                "This analysis does not need payment",
                details={"status": analysis.status},
            )

        transaction_id = await self._gateway.create_transaction(
            items=[{"price_id": self._gateway.get_price_id(PlanTier.SINGLE), "quantity": 1}],
            custom_data={"analysis_id": analysis_id, "user_id": user_id},
            success_url=f"{self._app_url}/analysis/{analysis_id}?paid=1",
        )

        if not await self._analyses.set_transaction_ref(analysis_id, transaction_id):
            logger.info(
                f"Analysis {analysis_id} left pending before transaction {transaction_id} "
                "was attached"
            )

        return CheckoutResponse(transactionId=transaction_id)

    async def create_plan_checkout(self, user_id: str, tier: PlanTier) -> CheckoutResponse:
        """Open a transaction that moves the caller to ``tier`` once paid."""
        if tier == PlanTier.NONE:
            raise ValidationError("Invalid tier", details={"tier": tier.value})

        transaction_id = await self._gateway.create_transaction(
            items=[{"price_id": self._gateway.get_price_id(tier), "quantity": 1}],
            custom_data={"user_id": user_id, "tier": tier.value},
            success_url=f"{self._app_url}/dashboard?upgraded=1",
        )
        return CheckoutResponse(transactionId=transaction_id)
