"""Map a delivery result onto the HTTP response the provider sees.

A 2xx stops redelivery; anything else puts the event back on the provider's
retry schedule. Duplicates, stale events and unknown types are successes.
Authentication failures get 401 because a retry cannot fix them.
"""

import uuid

import structlog
from fastapi.responses import JSONResponse

from paysync.core.exceptions import (
    AuthenticationFailure,
    MalformedPayload,
    SecretNotConfigured,
)
from paysync.middleware.correlation import get_correlation_id
from paysync.webhooks.pipeline import DeliveryOutcome

logger = structlog.get_logger(__name__)


def acknowledge(outcome: DeliveryOutcome) -> JSONResponse:
    return JSONResponse(status_code=200, content={"status": "ok", "outcome": outcome.value})


def reject(exc: Exception) -> JSONResponse:
    """Response for a delivery that raised."""
    if isinstance(exc, SecretNotConfigured):
        logger.error("webhook_secret_missing")
        return JSONResponse(
            status_code=503,
            content={"detail": "Webhook endpoint is not configured", "reason": exc.reason},
        )

    if isinstance(exc, AuthenticationFailure):
        return JSONResponse(
            status_code=401,
            content={"detail": "Invalid webhook signature", "reason": exc.reason},
        )

    if isinstance(exc, MalformedPayload):
        return JSONResponse(status_code=500, content={"detail": "Malformed payload"})

    debug_id = str(uuid.uuid4())
    logger.error(
        "webhook_delivery_failed",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Webhook processing failed", "debug_id": debug_id},
    )
