"""Webhook pipeline: one delivery from raw bytes to a DeliveryOutcome.

    verify -> parse -> route -> claim -> apply -> complete

Verification happens before anything else: an unauthenticated body is never
parsed, deduplicated or stored. Unknown event types are acknowledged without
being claimed. A failure after the claim releases it, so the provider's
retry can apply the event later.
"""

import asyncio
from enum import StrEnum

import structlog

from paysync.core.config import Settings
from paysync.core.exceptions import (
    AuthenticationFailure,
    DownstreamFailure,
    MalformedPayload,
)
from paysync.core.locking import EntityLock
from paysync.domain.states import EventOutcome
from paysync.metrics.cloudwatch import CloudWatchMetrics
from paysync.services.deduplicator import EventDeduplicator
from paysync.services.reconciler import StateReconciler
from paysync.storage.base import StateStore
from paysync.webhooks.events import parse_event
from paysync.webhooks.handlers import default_handlers
from paysync.webhooks.router import EventRouter, HandlerResult
from paysync.webhooks.signature import verify_signature

logger = structlog.get_logger(__name__)


class DeliveryOutcome(StrEnum):
    """Result of a successfully acknowledged delivery."""

    APPLIED = "applied"
    STALE = "stale"
    DUPLICATE = "duplicate"
    UNHANDLED = "unhandled"


class WebhookPipeline:
    def __init__(
        self,
        secret: str | None,
        router: EventRouter,
        deduplicator: EventDeduplicator,
        metrics: CloudWatchMetrics | None = None,
    ):
        self.secret = secret
        self.router = router
        self.deduplicator = deduplicator
        self.metrics = metrics

    async def _count(self, outcome: str, event_type: str | None = None) -> None:
        if self.metrics is not None:
            await self.metrics.emit_webhook_outcome(outcome, event_type)

    async def _alert(self, kind: str, event_type: str | None = None) -> None:
        if self.metrics is not None:
            await self.metrics.emit_operator_alert(kind, event_type)

    async def handle(self, body: bytes, signature: str | None) -> DeliveryOutcome:
        """Process one delivery.

        Returns:
            The outcome to acknowledge with 200

        Raises:
            AuthenticationFailure: Signature could not be verified
            MalformedPayload: Body or event object violates the contract
            DownstreamFailure: Storage or locking failed; the sender should retry
        """
        try:
            verify_signature(body, signature, self.secret)
        except AuthenticationFailure as exc:
            logger.warning(
                "webhook_signature_rejected",
                reason=exc.reason,
                security_event=True,
                body_bytes=len(body),
            )
            await self._count("rejected")
            await self._alert("authentication_failure")
            raise

        try:
            event = parse_event(body)
        except MalformedPayload as exc:
            logger.error("webhook_payload_malformed", error=str(exc))
            await self._count("malformed")
            await self._alert("malformed_payload")
            raise

        log = logger.bind(event_id=event.id, event_type=event.event_type)

        handler = self.router.resolve(event.event_type)
        if handler is None:
            log.info("webhook_event_unhandled")
            await self._count(DeliveryOutcome.UNHANDLED, event.event_type)
            return DeliveryOutcome.UNHANDLED

        if not await self.deduplicator.claim(event):
            await self._count(DeliveryOutcome.DUPLICATE, event.event_type)
            return DeliveryOutcome.DUPLICATE

        log.info("webhook_received")
        try:
            result = await handler.apply(event)
        except asyncio.CancelledError:
            # Request timeout or shutdown: the claim must not outlive the attempt
            log.warning("webhook_apply_cancelled")
            await asyncio.shield(self._release(event.id))
            raise
        except Exception as exc:
            await self._release(event.id)
            if isinstance(exc, MalformedPayload):
                log.error("webhook_payload_malformed", error=str(exc))
                await self._count("malformed", event.event_type)
                await self._alert("malformed_payload", event.event_type)
                raise
            log.error("webhook_apply_failed", error=str(exc), error_type=type(exc).__name__)
            await self._count("failed", event.event_type)
            if isinstance(exc, DownstreamFailure):
                raise
            raise DownstreamFailure("apply_event", str(exc)) from exc

        outcome = EventOutcome.APPLIED if result == HandlerResult.APPLIED else EventOutcome.IGNORED
        await self.deduplicator.complete(event.id, outcome)

        delivery = DeliveryOutcome.APPLIED if result == HandlerResult.APPLIED else DeliveryOutcome.STALE
        log.info("webhook_processed", outcome=delivery.value)
        await self._count(delivery, event.event_type)
        return delivery

    async def _release(self, event_id: str) -> None:
        try:
            await self.deduplicator.fail(event_id)
        except DownstreamFailure as exc:
            # The lease expiry makes the claim reclaimable anyway
            logger.warning("webhook_claim_release_failed", event_id=event_id, error=str(exc))


def build_pipeline(
    settings: Settings,
    store: StateStore,
    lock: EntityLock,
    metrics: CloudWatchMetrics | None = None,
) -> WebhookPipeline:
    """Wire the pipeline from explicit settings and collaborators."""
    reconciler = StateReconciler(
        store,
        lock,
        timeout=settings.storage_timeout_seconds,
        metrics=metrics,
    )
    deduplicator = EventDeduplicator(
        store,
        timeout=settings.storage_timeout_seconds,
        lease_seconds=settings.claim_lease_seconds,
        retention_days=settings.processed_event_retention_days,
    )
    return WebhookPipeline(
        secret=settings.webhook_secret,
        router=EventRouter(default_handlers(reconciler)),
        deduplicator=deduplicator,
        metrics=metrics,
    )
