"""Event deduplication: at-most-once application per provider event id.

The claim is a single atomic store operation, so two workers receiving the
same delivery concurrently cannot both apply it. A claim that ends in
failure is released (outcome ``failed``) and the provider's retry can claim
it again; only completed events count as duplicates.
"""

from datetime import UTC, datetime, timedelta

import structlog

from paysync.domain.states import EventOutcome
from paysync.storage.base import StateStore, bounded
from paysync.webhooks.events import WebhookEvent

logger = structlog.get_logger(__name__)


class EventDeduplicator:
    def __init__(
        self,
        store: StateStore,
        timeout: float = 5.0,
        lease_seconds: int = 300,
        retention_days: int = 30,
    ):
        self.store = store
        self.timeout = timeout
        self.lease = timedelta(seconds=lease_seconds)
        self.retention = timedelta(days=retention_days)

    async def claim(self, event: WebhookEvent, now: datetime | None = None) -> bool:
        """Claim ``event`` for processing.

        Returns:
            True if this caller must apply the event, False if it was already
            applied or is being applied by someone else

        Raises:
            DownstreamFailure: Store unavailable or timed out
        """
        now = now or datetime.now(UTC)
        claimed = await bounded(
            "claim_event",
            self.store.claim_event(event.id, event.event_type, now, now - self.lease),
            self.timeout,
        )
        if not claimed:
            logger.info("webhook_duplicate_ignored", event_id=event.id, event_type=event.event_type)
        return claimed

    async def complete(self, event_id: str, outcome: EventOutcome) -> None:
        if outcome not in (EventOutcome.APPLIED, EventOutcome.IGNORED):
            raise ValueError(f"complete() takes applied or ignored, got {outcome}")
        await bounded(
            "complete_event",
            self.store.complete_event(event_id, outcome, datetime.now(UTC)),
            self.timeout,
        )

    async def fail(self, event_id: str) -> None:
        """Release a claim after a failed attempt so a redelivery can retry it."""
        await bounded("fail_event", self.store.fail_event(event_id, datetime.now(UTC)), self.timeout)
        logger.info("webhook_claim_released", event_id=event_id)

    async def prune(self, now: datetime | None = None) -> int:
        """Delete records first seen before the retention horizon."""
        now = now or datetime.now(UTC)
        cutoff = now - self.retention
        deleted = await bounded("prune_events", self.store.prune_events(cutoff), self.timeout)
        logger.info("processed_events_pruned", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted
