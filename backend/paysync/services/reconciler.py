"""State reconciler: applies parsed events to local entity state.

Each entity is reconciled under its own EntityLock, then written with a
compare-and-set on its version, so the "never regress to an older event"
rule holds across workers even if a lock expires. Different entities are
reconciled independently. Only one entity lock is held at a time.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from paysync.core.exceptions import DownstreamFailure
from paysync.core.locking import EntityLock
from paysync.domain.reconciliation import (
    EventStamp,
    OrderFields,
    SubscriptionFields,
    apply_customer_event,
    apply_order_event,
    apply_subscription_event,
    record_order_refund,
    record_subscription_dispute,
    record_subscription_refund,
)
from paysync.domain.states import EventType, SubscriptionStatus
from paysync.metrics.cloudwatch import CloudWatchMetrics
from paysync.storage.base import StateStore, bounded
from paysync.webhooks.events import (
    CheckoutObject,
    CustomerRef,
    DisputeObject,
    OrderObject,
    RefundObject,
    SubscriptionObject,
    WebhookEvent,
)
from paysync.webhooks.router import HandlerResult

logger = structlog.get_logger(__name__)

S = TypeVar("S")


def _stamp(event: WebhookEvent, event_type: EventType) -> EventStamp:
    return EventStamp(event_id=event.id, event_type=event_type, occurred_at=event.created_at)


def email_customer_id(email: str) -> str:
    """Local customer id for a customer the provider only identified by email."""
    return f"email:{email.strip().lower()}"


def _result(changed: object) -> HandlerResult:
    return HandlerResult.APPLIED if changed is not None else HandlerResult.STALE


class StateReconciler:
    # Compare-and-set losses re-evaluate against fresh state this many times
    MAX_CONFLICT_ROUNDS = 3

    def __init__(
        self,
        store: StateStore,
        lock: EntityLock,
        timeout: float = 5.0,
        metrics: CloudWatchMetrics | None = None,
    ):
        self.store = store
        self.lock = lock
        self.timeout = timeout
        self.metrics = metrics

    async def _reconcile(
        self,
        kind: str,
        entity_id: str,
        load: Callable[[str], Awaitable[S | None]],
        save: Callable[[S], Awaitable[bool]],
        mutate: Callable[[S | None], S | None],
    ) -> S | None:
        """Load, apply ``mutate`` and save one entity under its lock.

        Returns:
            The saved state, or None when ``mutate`` decided nothing changes

        Raises:
            DownstreamFailure: Storage timeout, lock timeout, or persistent CAS conflict
        """
        async with self.lock.lock(f"{kind}:{entity_id}"):
            for _ in range(self.MAX_CONFLICT_ROUNDS):
                current = await bounded(f"get_{kind}", load(entity_id), self.timeout)
                updated = mutate(current)
                if updated is None:
                    return None
                if await bounded(f"save_{kind}", save(updated), self.timeout):
                    return updated
                logger.info("reconcile_version_conflict", kind=kind, entity_id=entity_id)

        raise DownstreamFailure(f"save_{kind}", f"version conflict persisted for {entity_id}")

    async def _reconcile_customer(self, stamp: EventStamp, ref: CustomerRef | None) -> str | None:
        """Create or update the referenced customer. Returns its id when known.

        A reference carrying only an email is matched against stored
        customers first; with no match, the customer is created under a local
        id derived from the email so later email-only events land on it.
        """
        if ref is None:
            return None

        customer_id = ref.id
        if customer_id is None and ref.email:
            existing = await bounded(
                "find_customer_by_email",
                self.store.find_customer_by_email(ref.email),
                self.timeout,
            )
            if existing is not None:
                customer_id = existing.id
            else:
                customer_id = email_customer_id(ref.email)
                logger.info("customer_created_from_email", customer_id=customer_id, event_id=stamp.event_id)
        if customer_id is None:
            return None

        saved = await self._reconcile(
            "customer",
            customer_id,
            self.store.get_customer,
            self.store.save_customer,
            lambda state: apply_customer_event(state, customer_id, stamp, ref.email, ref.name),
        )
        if saved is not None:
            logger.debug("customer_reconciled", customer_id=customer_id, event_id=stamp.event_id)
        return customer_id

    async def _reconcile_subscription(
        self,
        stamp: EventStamp,
        subscription: SubscriptionObject,
        customer_id: str | None,
        product_id: str | None = None,
    ):
        fields = SubscriptionFields(
            status=subscription.status,
            customer_id=customer_id,
            product_id=subscription.product_id or product_id,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            canceled_at=subscription.canceled_at,
        )
        saved = await self._reconcile(
            "subscription",
            subscription.id,
            self.store.get_subscription,
            self.store.save_subscription,
            lambda state: apply_subscription_event(state, subscription.id, stamp, fields),
        )
        if saved is None:
            logger.info(
                "reconciliation_conflict_skipped",
                reason="not_newer_than_last_applied",
                subscription_id=subscription.id,
                event_id=stamp.event_id,
                event_type=stamp.event_type.value,
            )
        else:
            logger.info(
                "subscription_reconciled",
                subscription_id=subscription.id,
                status=saved.status.value if saved.status else None,
                event_id=stamp.event_id,
                event_type=stamp.event_type.value,
            )
        return saved

    async def _reconcile_order(self, stamp: EventStamp, order: OrderObject, customer_id, product_id):
        fields = OrderFields(
            customer_id=customer_id,
            product_id=order.product_id or product_id,
            status=order.status,
            amount=order.amount,
            currency=order.currency,
        )
        return await self._reconcile(
            "order",
            order.id,
            self.store.get_order,
            self.store.save_order,
            lambda state: apply_order_event(state, order.id, stamp, fields),
        )

    # ── Per event type ──────────────────────────────────────────────

    async def apply_checkout(self, event: WebhookEvent, payload: CheckoutObject) -> HandlerResult:
        stamp = _stamp(event, EventType.CHECKOUT_COMPLETED)
        customer = payload.customer
        if customer is None and payload.subscription is not None:
            customer = payload.subscription.customer
        customer_id = await self._reconcile_customer(stamp, customer)

        if payload.subscription is not None:
            saved = await self._reconcile_subscription(stamp, payload.subscription, customer_id, payload.product_id)
            return _result(saved)

        if payload.order is not None:
            saved = await self._reconcile_order(stamp, payload.order, customer_id, payload.product_id)
            if saved is not None:
                logger.info("order_recorded", order_id=saved.id, customer_id=customer_id, event_id=event.id)
            return _result(saved)

        logger.warning("checkout_without_subscription_or_order", checkout_id=payload.id, event_id=event.id)
        return HandlerResult.STALE

    async def apply_subscription(
        self,
        event: WebhookEvent,
        event_type: EventType,
        payload: SubscriptionObject,
    ) -> HandlerResult:
        stamp = _stamp(event, event_type)
        customer_id = await self._reconcile_customer(stamp, payload.customer)
        saved = await self._reconcile_subscription(stamp, payload, customer_id)

        if saved is not None and event_type == EventType.SUBSCRIPTION_EXPIRED:
            logger.info(
                "subscription_expired_pending_retry",
                subscription_id=payload.id,
                status=saved.status.value if saved.status else None,
            )
        return _result(saved)

    async def apply_refund(self, event: WebhookEvent, payload: RefundObject) -> HandlerResult:
        stamp = _stamp(event, EventType.REFUND_CREATED)
        await self._reconcile_customer(stamp, payload.customer)

        changed = None
        if payload.subscription_id:
            subscription_id = payload.subscription_id
            saved = await self._reconcile(
                "subscription",
                subscription_id,
                self.store.get_subscription,
                self.store.save_subscription,
                lambda state: record_subscription_refund(state, subscription_id, event.created_at),
            )
            if saved is not None:
                changed = saved
                if saved.status == SubscriptionStatus.CANCELED:
                    logger.info(
                        "entitlement_revoked_by_refund",
                        subscription_id=subscription_id,
                        refund_id=payload.id,
                    )
                else:
                    logger.info(
                        "refund_recorded",
                        subscription_id=subscription_id,
                        refund_id=payload.id,
                        status=saved.status.value if saved.status else None,
                    )

        if payload.order_id:
            order_id = payload.order_id
            saved_order = await self._reconcile(
                "order",
                order_id,
                self.store.get_order,
                self.store.save_order,
                lambda state: record_order_refund(state, order_id, event.created_at),
            )
            if saved_order is not None:
                changed = saved_order
                logger.info("order_refund_recorded", order_id=order_id, refund_id=payload.id)

        if not payload.subscription_id and not payload.order_id:
            logger.warning("refund_without_target", refund_id=payload.id, event_id=event.id)
        return _result(changed)

    async def apply_dispute(self, event: WebhookEvent, payload: DisputeObject) -> HandlerResult:
        stamp = _stamp(event, EventType.DISPUTE_CREATED)
        customer_id = await self._reconcile_customer(stamp, payload.customer)

        if payload.subscription_id:
            subscription_id = payload.subscription_id
            await self._reconcile(
                "subscription",
                subscription_id,
                self.store.get_subscription,
                self.store.save_subscription,
                lambda state: record_subscription_dispute(state, subscription_id, event.created_at),
            )

        # No automatic entitlement change: the operator decides
        logger.warning(
            "dispute_requires_review",
            dispute_id=payload.id,
            subscription_id=payload.subscription_id,
            order_id=payload.order_id,
            customer_id=customer_id,
            amount=payload.amount,
            currency=payload.currency,
        )
        if self.metrics is not None:
            await self.metrics.emit_operator_alert("dispute_created", event.event_type)
        return HandlerResult.APPLIED
