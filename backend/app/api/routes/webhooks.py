"""
Paddle Webhook Handler

Receives Paddle events. The signature is checked against the raw body
before anything is parsed; business no-ops still answer 200 so Paddle
stops redelivering events that were already applied.

Handled events:
- transaction.completed: pay-per-use analysis paid, or plan purchased
- subscription.canceled: profile back to plan ``none``
"""

import json
import logging

from fastapi import APIRouter, Request

from app.api.dependencies import ContainerDep
from app.infrastructure.exceptions import InvalidSignatureError, ValidationError


logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "paddle-signature"


@router.post("/webhooks/paddle")
async def paddle_webhook(request: Request, container: ContainerDep):
    """
    Handle Paddle webhook events.

    Returns:
        ``{"received": true}``; 401 only for signature failures.
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not container.gateway.verify_webhook_signature(raw_body, signature):
        logger.warning("Rejected webhook with invalid or missing signature")
        raise InvalidSignatureError()

    try:
        event = json.loads(raw_body)
    except ValueError as e:
        raise ValidationError("Invalid JSON payload", original_error=e) from e

    if not isinstance(event, dict):
        raise ValidationError("Invalid webhook payload")

    event_type = event.get("event_type")
    logger.info(f"Received webhook: {event_type} ({event.get('event_id')})")

    if event_type:
        outcome = await container.state_machine.handle_webhook_event(event)
        logger.info(f"Webhook {event_type} handled: {outcome}")

    return {"received": True}
