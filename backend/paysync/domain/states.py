"""Local entity state mirrored from payment-provider events.

Plain values with no persistence concerns; storage backends convert
their rows to and from these dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class EventType(StrEnum):
    """Event-type tags the pipeline knows how to apply."""

    CHECKOUT_COMPLETED = "checkout.completed"
    SUBSCRIPTION_ACTIVE = "subscription.active"
    SUBSCRIPTION_PAID = "subscription.paid"
    SUBSCRIPTION_CANCELED = "subscription.canceled"
    SUBSCRIPTION_SCHEDULED_CANCEL = "subscription.scheduled_cancel"
    SUBSCRIPTION_EXPIRED = "subscription.expired"
    SUBSCRIPTION_PAUSED = "subscription.paused"
    SUBSCRIPTION_TRIALING = "subscription.trialing"
    SUBSCRIPTION_UPDATE = "subscription.update"
    REFUND_CREATED = "refund.created"
    DISPUTE_CREATED = "dispute.created"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAUSED = "paused"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    SCHEDULED_CANCEL = "scheduled_cancel"
    EXPIRED = "expired"


class EventOutcome(StrEnum):
    """Lifecycle of a ProcessedEventRecord."""

    PROCESSING = "processing"
    APPLIED = "applied"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class ProcessedEventRecord:
    event_id: str
    event_type: str
    outcome: EventOutcome
    attempts: int
    first_seen_at: datetime
    claimed_at: datetime
    processed_at: datetime | None = None


@dataclass
class CustomerState:
    id: str
    email: str | None = None
    name: str | None = None
    last_event_id: str | None = None
    last_event_at: datetime | None = None
    version: int = 0


@dataclass
class SubscriptionState:
    id: str
    status: SubscriptionStatus | None = None
    customer_id: str | None = None
    product_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    canceled_at: datetime | None = None
    refunded_at: datetime | None = None
    disputed_at: datetime | None = None
    last_event_id: str | None = None
    last_event_at: datetime | None = None
    version: int = 0


@dataclass
class OrderState:
    id: str
    customer_id: str | None = None
    product_id: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    refunded_at: datetime | None = None
    last_event_id: str | None = None
    last_event_at: datetime | None = None
    version: int = 0
