"""Inbound payment-provider webhooks."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from paysync.core.exceptions import PaysyncError
from paysync.webhooks.acknowledger import acknowledge, reject
from paysync.webhooks.pipeline import WebhookPipeline

router = APIRouter()


@router.post("/payments")
async def payments_webhook(request: Request) -> JSONResponse:
    """Receive one signed delivery; the status code drives provider retries."""
    pipeline: WebhookPipeline = request.app.state.pipeline
    header = request.app.state.settings.webhook_signature_header

    # Raw bytes: the signature covers the body exactly as sent
    body = await request.body()
    signature = request.headers.get(header)

    try:
        outcome = await pipeline.handle(body, signature)
    except PaysyncError as exc:
        return reject(exc)
    return acknowledge(outcome)
