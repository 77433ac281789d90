"""Event handlers: one object per provider event type.

Each handler validates the event's ``object`` against its payload shape and
hands it to the StateReconciler, which owns ordering and persistence.
"""

from paysync.domain.states import EventType
from paysync.services.reconciler import StateReconciler
from paysync.webhooks.events import (
    CheckoutObject,
    DisputeObject,
    RefundObject,
    SubscriptionObject,
    WebhookEvent,
    parse_object,
)
from paysync.webhooks.router import HandlerResult

SUBSCRIPTION_EVENT_TYPES = (
    EventType.SUBSCRIPTION_ACTIVE,
    EventType.SUBSCRIPTION_PAID,
    EventType.SUBSCRIPTION_CANCELED,
    EventType.SUBSCRIPTION_SCHEDULED_CANCEL,
    EventType.SUBSCRIPTION_EXPIRED,
    EventType.SUBSCRIPTION_PAUSED,
    EventType.SUBSCRIPTION_TRIALING,
    EventType.SUBSCRIPTION_UPDATE,
)


class BaseEventHandler:
    event_types: frozenset[str] = frozenset()

    def __init__(self, reconciler: StateReconciler):
        self.reconciler = reconciler

    def handles(self, tag: str) -> bool:
        return tag in self.event_types

    async def apply(self, event: WebhookEvent) -> HandlerResult:
        raise NotImplementedError


class CheckoutCompletedHandler(BaseEventHandler):
    """checkout.completed: customer + subscription (or one-time order), status active."""

    event_types = frozenset({EventType.CHECKOUT_COMPLETED.value})

    async def apply(self, event: WebhookEvent) -> HandlerResult:
        payload = parse_object(event, CheckoutObject)
        return await self.reconciler.apply_checkout(event, payload)


class SubscriptionEventHandler(BaseEventHandler):
    """One subscription.* lifecycle tag; the policy lives in domain.reconciliation."""

    def __init__(self, reconciler: StateReconciler, event_type: EventType):
        if event_type not in SUBSCRIPTION_EVENT_TYPES:
            raise ValueError(f"{event_type} is not a subscription lifecycle event")
        super().__init__(reconciler)
        self.event_type = event_type
        self.event_types = frozenset({event_type.value})

    async def apply(self, event: WebhookEvent) -> HandlerResult:
        payload = parse_object(event, SubscriptionObject)
        return await self.reconciler.apply_subscription(event, self.event_type, payload)


class RefundCreatedHandler(BaseEventHandler):
    """refund.created: revokes entitlement at once if the subscription is canceled."""

    event_types = frozenset({EventType.REFUND_CREATED.value})

    async def apply(self, event: WebhookEvent) -> HandlerResult:
        payload = parse_object(event, RefundObject)
        return await self.reconciler.apply_refund(event, payload)


class DisputeCreatedHandler(BaseEventHandler):
    """dispute.created: recorded and surfaced to the operator; entitlement untouched."""

    event_types = frozenset({EventType.DISPUTE_CREATED.value})

    async def apply(self, event: WebhookEvent) -> HandlerResult:
        payload = parse_object(event, DisputeObject)
        return await self.reconciler.apply_dispute(event, payload)


def default_handlers(reconciler: StateReconciler) -> list[BaseEventHandler]:
    """Handlers for every EventType the service understands."""
    return [
        CheckoutCompletedHandler(reconciler),
        *(SubscriptionEventHandler(reconciler, event_type) for event_type in SUBSCRIPTION_EVENT_TYPES),
        RefundCreatedHandler(reconciler),
        DisputeCreatedHandler(reconciler),
    ]
