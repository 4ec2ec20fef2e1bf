"""
Paddle Payment Service

Infrastructure service for the Paddle Merchant-of-Record REST API.
Handles checkout transactions, direct transaction verification and
webhook signature validation.

- Transactions are created server-side; the client opens the overlay checkout
- Transaction status can be re-verified by id when a webhook is late
- Webhook signatures are HMAC-SHA256 over ``{ts}:{raw body}``
"""

import hashlib
import hmac
import logging
from typing import Any, Optional

import httpx

from app.config.settings import Settings
from app.domain.billing import PlanTier
from app.infrastructure.exceptions import (
    ConfigurationError,
    GatewayUnavailableError,
)


logger = logging.getLogger(__name__)

PAID_TRANSACTION_STATUSES = frozenset({"completed", "paid"})


def _parse_signature_header(signature_header: str) -> tuple[Optional[str], list[str]]:
    """Split ``ts=...;h1=...`` into the timestamp and the h1 digests."""
    timestamp: Optional[str] = None
    digests: list[str] = []
    for part in signature_header.split(";"):
        key, sep, value = part.strip().partition("=")
        if not sep or not value:
            continue
        if key == "ts":
            timestamp = value
        elif key == "h1":
            digests.append(value)
    return timestamp, digests


def verify_webhook_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
) -> bool:
    """
    Verify a Paddle webhook signature.

    Args:
        raw_body: Request body exactly as received
        signature_header: ``Paddle-Signature`` header (``ts=<unix>;h1=<hex>``)
        secret: Endpoint shared secret

    Returns:
        True only if a supplied digest matches. Malformed headers (missing
        timestamp or hash) and digests of the wrong length are rejected
        before any byte comparison.
    """
    if not signature_header or not secret:
        return False

    timestamp, digests = _parse_signature_header(signature_header)
    if not timestamp or not digests:
        return False

    payload = timestamp.encode("utf-8") + b":" + raw_body
    computed = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    for supplied in digests:
        if len(supplied) != len(computed):
            continue
        if hmac.compare_digest(supplied.encode("utf-8"), computed.encode("utf-8")):
            return True
    return False


class PaddleService:
    """
    Paddle REST client.

    Takes its settings and an optional pre-built ``httpx.AsyncClient``
    (tests pass one with a mock transport).
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._webhook_secret = settings.paddle_webhook_secret
        self._client = client or httpx.AsyncClient(
            base_url=settings.paddle_api_base,
            timeout=30.0,
        )

        # Price ID mapping: tier -> paddle price id
        self._price_map = {
            PlanTier.SINGLE: settings.paddle_price_id_single,
            PlanTier.BASIC: settings.paddle_price_id_basic,
            PlanTier.PRO: settings.paddle_price_id_pro,
        }

    def _headers(self) -> dict[str, str]:
        if not self._settings.paddle_api_key:
            raise ConfigurationError(
                "Missing Paddle API key",
                missing_keys=["PADDLE_API_KEY"],
            )
        return {
            "Authorization": f"Bearer {self._settings.paddle_api_key}",
            "Content-Type": "application/json",
        }

    def get_price_id(self, tier: PlanTier) -> str:
        """Get the Paddle price id for a purchasable tier."""
        price_id = self._price_map.get(tier)

        if not price_id:
            raise ConfigurationError(
                f"No price configured for tier {tier.value}",
                missing_keys=[f"PADDLE_PRICE_ID_{tier.value.upper()}"],
            )

        return price_id

    # =========================================================================
    # Transactions
    # =========================================================================

    async def create_transaction(
        self,
        items: list[dict[str, Any]],
        custom_data: dict[str, str],
        success_url: str,
    ) -> str:
        """
        Create a checkout transaction.

        Args:
            items: ``[{"price_id": ..., "quantity": 1}]``
            custom_data: Correlation ids echoed back in webhooks
            success_url: Redirect after the overlay checkout completes

        Returns:
            Paddle transaction id

        Raises:
            GatewayUnavailableError on transport failure or non-2xx response
        """
        body = {
            "items": items,
            "custom_data": custom_data,
            "checkout": {
                "settings": {
                    "success_url": success_url,
                    "display_mode": "overlay",
                    "theme": "dark",
                },
            },
        }

        try:
            response = await self._client.post(
                "/transactions", json=body, headers=self._headers()
            )
        except httpx.HTTPError as e:
            logger.error(f"Paddle transaction request failed: {e.__class__.__name__}")
            raise GatewayUnavailableError(
                "Failed to create checkout", original_error=e
            ) from e

        if not response.is_success:
            logger.error(
                f"Paddle API error creating transaction: {response.status_code} - "
                f"{response.text[:500]}"
            )
            raise GatewayUnavailableError(
                "Failed to create checkout", status=response.status_code
            )

        transaction_id = response.json().get("data", {}).get("id")
        if not transaction_id:
            raise GatewayUnavailableError("Paddle response missing transaction id")

        logger.info(f"Created Paddle transaction {transaction_id}")
        return transaction_id

    async def verify_transaction(self, transaction_id: str) -> bool:
        """
        Ask Paddle directly whether a transaction is paid.

        Used when the client confirms before the webhook has arrived.

        Returns:
            True if the transaction status is completed or paid. Client
            errors (unknown id, 4xx) mean "not paid".

        Raises:
            GatewayUnavailableError on transport failure or a 5xx response
        """
        try:
            response = await self._client.get(
                f"/transactions/{transaction_id}", headers=self._headers()
            )
        except httpx.HTTPError as e:
            logger.warning(f"Paddle verification request failed: {e.__class__.__name__}")
            raise GatewayUnavailableError(
                "Could not verify payment", original_error=e
            ) from e

        if response.status_code >= 500:
            raise GatewayUnavailableError(
                "Could not verify payment", status=response.status_code
            )
        if not response.is_success:
            logger.warning(
                f"Paddle verification for {transaction_id} returned {response.status_code}"
            )
            return False

        status = (response.json().get("data") or {}).get("status")
        return status in PAID_TRANSACTION_STATUSES

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
    ) -> bool:
        """Verify a webhook against the configured shared secret."""
        return verify_webhook_signature(raw_body, signature_header, self._webhook_secret)

    async def close(self) -> None:
        await self._client.aclose()
