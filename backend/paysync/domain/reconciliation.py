"""Reconciliation policy: how one provider event changes local entity state.

Pure domain functions. No DB access, no clock reads, fully deterministic.

Every function returns the new state, or None when the event must not change
anything (stale, equal-timestamp, or already-recorded fact). The caller is
responsible for persisting the returned state atomically.

Ordering rules:
    - State-carrying events (checkout, subscription.*) are applied only when
      strictly newer than the entity's last applied event. Equal timestamps
      are treated as not newer.
    - Facts (refunds, disputes) commute: a dispute keeps its earliest
      occurrence, a refund its latest, and neither moves the ordering marker,
      so arrival order never matters.
"""

from dataclasses import dataclass, replace
from datetime import datetime

from paysync.domain.states import (
    CustomerState,
    EventType,
    OrderState,
    SubscriptionState,
    SubscriptionStatus,
)

# Status each state-carrying event forces. Absent types leave status alone
# (subscription.expired) or take it from the payload (subscription.update).
STATUS_BY_EVENT: dict[EventType, SubscriptionStatus] = {
    EventType.CHECKOUT_COMPLETED: SubscriptionStatus.ACTIVE,
    EventType.SUBSCRIPTION_ACTIVE: SubscriptionStatus.ACTIVE,
    EventType.SUBSCRIPTION_PAID: SubscriptionStatus.ACTIVE,
    EventType.SUBSCRIPTION_CANCELED: SubscriptionStatus.CANCELED,
    EventType.SUBSCRIPTION_SCHEDULED_CANCEL: SubscriptionStatus.SCHEDULED_CANCEL,
    EventType.SUBSCRIPTION_PAUSED: SubscriptionStatus.PAUSED,
    EventType.SUBSCRIPTION_TRIALING: SubscriptionStatus.TRIALING,
}

SUBSCRIPTION_STATE_EVENTS = frozenset(STATUS_BY_EVENT) | {
    EventType.SUBSCRIPTION_EXPIRED,
    EventType.SUBSCRIPTION_UPDATE,
}


@dataclass(frozen=True)
class EventStamp:
    """Identity and position in time of the event being applied."""

    event_id: str
    event_type: EventType
    occurred_at: datetime


@dataclass(frozen=True)
class SubscriptionFields:
    """Subscription attributes carried by an event payload (None = not present)."""

    status: str | None = None
    customer_id: str | None = None
    product_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    canceled_at: datetime | None = None


@dataclass(frozen=True)
class OrderFields:
    customer_id: str | None = None
    product_id: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None


def is_newer(event_at: datetime, last_event_at: datetime | None) -> bool:
    """True when ``event_at`` strictly follows the last applied event."""
    return last_event_at is None or event_at > last_event_at


def parse_status(value: str | None) -> SubscriptionStatus | None:
    """Map a provider status string onto the closed status set; unknown -> None."""
    if value is None:
        return None
    try:
        return SubscriptionStatus(value.lower())
    except ValueError:
        return None


def _latest(current: datetime | None, incoming: datetime | None) -> datetime | None:
    if current is None:
        return incoming
    if incoming is None:
        return current
    return max(current, incoming)


def _earliest(current: datetime | None, incoming: datetime) -> datetime:
    if current is None:
        return incoming
    return min(current, incoming)


def apply_subscription_event(
    state: SubscriptionState | None,
    subscription_id: str,
    stamp: EventStamp,
    fields: SubscriptionFields,
) -> SubscriptionState | None:
    """Apply a state-carrying subscription event.

    Args:
        state: Current local state, or None if the subscription is unknown
        subscription_id: Provider subscription id the event refers to
        stamp: Event identity and timestamp
        fields: Attributes extracted from the payload

    Returns:
        The updated state, or None if the event is not newer than the state

    Rules:
        - checkout.completed / subscription.active / subscription.paid -> active
        - subscription.paid extends current_period_end, never shortens it
        - subscription.canceled -> canceled; entitlement is kept until period end
        - subscription.expired is informational: only the marker advances
        - subscription.update takes its status from the payload when recognised
    """
    if stamp.event_type not in SUBSCRIPTION_STATE_EVENTS:
        raise ValueError(f"{stamp.event_type} does not carry subscription state")

    if state is not None and not is_newer(stamp.occurred_at, state.last_event_at):
        return None

    current = state or SubscriptionState(id=subscription_id)
    updated = replace(
        current,
        last_event_id=stamp.event_id,
        last_event_at=stamp.occurred_at,
    )

    if fields.customer_id:
        updated.customer_id = fields.customer_id
    if fields.product_id:
        updated.product_id = fields.product_id

    if stamp.event_type == EventType.SUBSCRIPTION_EXPIRED:
        # Payment retries may still turn this into subscription.paid
        return updated

    if fields.current_period_start is not None:
        updated.current_period_start = fields.current_period_start
    if stamp.event_type == EventType.SUBSCRIPTION_PAID:
        updated.current_period_end = _latest(current.current_period_end, fields.current_period_end)
    elif fields.current_period_end is not None:
        updated.current_period_end = fields.current_period_end

    if stamp.event_type == EventType.SUBSCRIPTION_UPDATE:
        status = parse_status(fields.status) or current.status
    else:
        status = STATUS_BY_EVENT[stamp.event_type]
    updated.status = status

    if status == SubscriptionStatus.CANCELED:
        updated.canceled_at = fields.canceled_at or current.canceled_at or stamp.occurred_at
    elif status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
        updated.canceled_at = None

    return updated


def record_subscription_refund(
    state: SubscriptionState | None,
    subscription_id: str,
    occurred_at: datetime,
) -> SubscriptionState | None:
    """Record that a refund was issued against the subscription.

    The latest refund is kept: entitlement only looks at refunds issued in the
    current billing period, and an older refund must not mask a newer one.
    """
    current = state or SubscriptionState(id=subscription_id)
    refunded_at = _latest(current.refunded_at, occurred_at)
    if refunded_at == current.refunded_at:
        return None
    return replace(current, refunded_at=refunded_at)


def record_subscription_dispute(
    state: SubscriptionState | None,
    subscription_id: str,
    occurred_at: datetime,
) -> SubscriptionState | None:
    """Record that a dispute was opened. Entitlement is left to the operator."""
    current = state or SubscriptionState(id=subscription_id)
    disputed_at = _earliest(current.disputed_at, occurred_at)
    if disputed_at == current.disputed_at:
        return None
    return replace(current, disputed_at=disputed_at)


def apply_customer_event(
    state: CustomerState | None,
    customer_id: str,
    stamp: EventStamp,
    email: str | None = None,
    name: str | None = None,
) -> CustomerState | None:
    """Create the customer on first reference; later only newer events update it."""
    if state is None:
        return CustomerState(
            id=customer_id,
            email=email,
            name=name,
            last_event_id=stamp.event_id,
            last_event_at=stamp.occurred_at,
        )

    if not is_newer(stamp.occurred_at, state.last_event_at):
        return None

    return replace(
        state,
        email=email or state.email,
        name=name or state.name,
        last_event_id=stamp.event_id,
        last_event_at=stamp.occurred_at,
    )


def apply_order_event(
    state: OrderState | None,
    order_id: str,
    stamp: EventStamp,
    fields: OrderFields,
) -> OrderState | None:
    """Create or merge a one-time order from a completed checkout."""
    if state is not None and not is_newer(stamp.occurred_at, state.last_event_at):
        return None

    current = state or OrderState(id=order_id)
    return replace(
        current,
        customer_id=fields.customer_id or current.customer_id,
        product_id=fields.product_id or current.product_id,
        status=fields.status or current.status or "paid",
        amount=fields.amount if fields.amount is not None else current.amount,
        currency=fields.currency or current.currency,
        last_event_id=stamp.event_id,
        last_event_at=stamp.occurred_at,
    )


def record_order_refund(
    state: OrderState | None,
    order_id: str,
    occurred_at: datetime,
) -> OrderState | None:
    current = state or OrderState(id=order_id)
    refunded_at = _earliest(current.refunded_at, occurred_at)
    if refunded_at == current.refunded_at:
        return None
    return replace(current, refunded_at=refunded_at)
