"""
Payments Infrastructure Module

Paddle (Merchant of Record) transaction and webhook services.
"""

from app.infrastructure.payments.paddle_service import (
    PaddleService,
    verify_webhook_signature,
)

__all__ = ["PaddleService", "verify_webhook_signature"]
