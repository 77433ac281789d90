"""Tests for StateReconciler: locking, compare-and-set and per-type effects."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from factories import BASE_TIME, checkout_object, make_event, subscription_object
from paysync.core.exceptions import DownstreamFailure
from paysync.domain.states import EventType, SubscriptionStatus
from paysync.services.reconciler import StateReconciler
from paysync.storage import InMemoryStateStore
from paysync.webhooks.events import (
    CheckoutObject,
    DisputeObject,
    RefundObject,
    SubscriptionObject,
    WebhookEvent,
    parse_object,
)
from paysync.webhooks.router import HandlerResult

pytestmark = pytest.mark.unit


def envelope(event_id: str, event_type: str, obj: dict, at=BASE_TIME) -> WebhookEvent:
    return WebhookEvent.model_validate(make_event(event_id, event_type, obj, at))


@pytest.fixture
def reconciler(memory_store, entity_lock) -> StateReconciler:
    return StateReconciler(memory_store, entity_lock, timeout=1.0)


async def apply_sub(reconciler, event_id, event_type: EventType, at, **extra):
    event = envelope(event_id, event_type.value, subscription_object("sub_1", **extra), at)
    return await reconciler.apply_subscription(event, event_type, parse_object(event, SubscriptionObject))


async def test_subscription_event_creates_state_and_customer(reconciler, memory_store):
    result = await apply_sub(reconciler, "evt_1", EventType.SUBSCRIPTION_ACTIVE, BASE_TIME)

    assert result == HandlerResult.APPLIED
    state = await memory_store.get_subscription("sub_1")
    assert state.status == SubscriptionStatus.ACTIVE
    assert state.version == 1
    assert (await memory_store.get_customer("cust_001")).email == "cust_001@example.com"


async def test_stale_event_returns_stale(reconciler, memory_store):
    await apply_sub(reconciler, "evt_2", EventType.SUBSCRIPTION_PAUSED, BASE_TIME + timedelta(hours=1))
    result = await apply_sub(reconciler, "evt_1", EventType.SUBSCRIPTION_ACTIVE, BASE_TIME)

    assert result == HandlerResult.STALE
    assert (await memory_store.get_subscription("sub_1")).status == SubscriptionStatus.PAUSED


async def test_customer_resolved_by_email_when_id_missing(reconciler, memory_store):
    await apply_sub(reconciler, "evt_1", EventType.SUBSCRIPTION_ACTIVE, BASE_TIME)

    event = envelope(
        "evt_2",
        "subscription.paid",
        subscription_object("sub_2", customer={"email": "CUST_001@example.com"}),
        BASE_TIME + timedelta(minutes=1),
    )
    await reconciler.apply_subscription(event, EventType.SUBSCRIPTION_PAID, parse_object(event, SubscriptionObject))

    assert (await memory_store.get_subscription("sub_2")).customer_id == "cust_001"


async def test_checkout_with_unknown_email_creates_customer(reconciler, memory_store):
    customer = {"email": "New.Buyer@example.com", "name": "New Buyer"}
    first = envelope(
        "evt_1",
        "checkout.completed",
        checkout_object("sub_1", customer=customer, subscription=subscription_object("sub_1", customer=customer)),
    )
    await reconciler.apply_checkout(first, parse_object(first, CheckoutObject))

    subscription = await memory_store.get_subscription("sub_1")
    assert subscription.customer_id == "email:new.buyer@example.com"
    stored = await memory_store.get_customer(subscription.customer_id)
    assert stored.email == "New.Buyer@example.com"
    assert stored.name == "New Buyer"

    second = envelope(
        "evt_2",
        "checkout.completed",
        checkout_object("sub_2", customer={"email": "new.buyer@example.com"}),
        BASE_TIME + timedelta(minutes=1),
    )
    await reconciler.apply_checkout(second, parse_object(second, CheckoutObject))

    assert (await memory_store.get_subscription("sub_2")).customer_id == subscription.customer_id
    assert len(memory_store.customers) == 1


async def test_refund_on_canceled_subscription(reconciler, memory_store):
    await apply_sub(reconciler, "evt_1", EventType.SUBSCRIPTION_CANCELED, BASE_TIME, status="canceled")
    event = envelope("evt_2", "refund.created", {"id": "ref_1", "subscription": "sub_1"}, BASE_TIME)

    result = await reconciler.apply_refund(event, parse_object(event, RefundObject))

    assert result == HandlerResult.APPLIED
    state = await memory_store.get_subscription("sub_1")
    assert state.refunded_at == BASE_TIME
    assert state.last_event_id == "evt_1"


async def test_repeated_refund_is_stale(reconciler):
    first = envelope("evt_1", "refund.created", {"id": "ref_1", "subscription": "sub_1"}, BASE_TIME)
    second = envelope("evt_2", "refund.created", {"id": "ref_2", "subscription": "sub_1"}, BASE_TIME)

    assert await reconciler.apply_refund(first, parse_object(first, RefundObject)) == HandlerResult.APPLIED
    assert await reconciler.apply_refund(second, parse_object(second, RefundObject)) == HandlerResult.STALE


async def test_refund_on_order(reconciler, memory_store):
    event = envelope("evt_1", "refund.created", {"id": "ref_1", "order": {"id": "ord_1"}}, BASE_TIME)
    await reconciler.apply_refund(event, parse_object(event, RefundObject))
    assert (await memory_store.get_order("ord_1")).refunded_at == BASE_TIME


async def test_dispute_alerts_operator(memory_store, entity_lock):
    metrics = MagicMock()
    metrics.emit_operator_alert = AsyncMock()
    reconciler = StateReconciler(memory_store, entity_lock, timeout=1.0, metrics=metrics)
    event = envelope("evt_1", "dispute.created", {"id": "dsp_1", "order": "ord_1"}, BASE_TIME)

    result = await reconciler.apply_dispute(event, parse_object(event, DisputeObject))

    assert result == HandlerResult.APPLIED
    metrics.emit_operator_alert.assert_awaited_once_with("dispute_created", "dispute.created")
    assert memory_store.subscriptions == {}


class _ConflictingStore(InMemoryStateStore):
    """Every subscription save loses the compare-and-set."""

    def __init__(self):
        super().__init__()
        self.save_attempts = 0

    async def save_subscription(self, state):
        self.save_attempts += 1
        return False


async def test_persistent_conflict_raises_after_bounded_rounds(entity_lock):
    store = _ConflictingStore()
    reconciler = StateReconciler(store, entity_lock, timeout=1.0)
    event = envelope("evt_1", "subscription.active", subscription_object("sub_1", customer=None), BASE_TIME)

    with pytest.raises(DownstreamFailure, match="version conflict"):
        await reconciler.apply_subscription(event, EventType.SUBSCRIPTION_ACTIVE, parse_object(event, SubscriptionObject))
    assert store.save_attempts == StateReconciler.MAX_CONFLICT_ROUNDS


async def test_conflict_reevaluates_against_fresh_state(memory_store, entity_lock):
    """A save lost to a newer writer re-reads and then skips the stale event."""
    reconciler = StateReconciler(memory_store, entity_lock, timeout=1.0)
    await apply_sub(reconciler, "evt_1", EventType.SUBSCRIPTION_ACTIVE, BASE_TIME)

    original_save = memory_store.save_subscription
    raced = False

    async def racing_save(state):
        nonlocal raced
        if not raced:
            raced = True
            # Another worker applies a newer event between our read and write
            current = await memory_store.get_subscription("sub_1")
            current.status = SubscriptionStatus.PAUSED
            current.last_event_at = BASE_TIME + timedelta(hours=2)
            await original_save(current)
        return await original_save(state)

    memory_store.save_subscription = racing_save

    result = await apply_sub(reconciler, "evt_2", EventType.SUBSCRIPTION_CANCELED, BASE_TIME + timedelta(hours=1))

    assert result == HandlerResult.STALE
    assert (await memory_store.get_subscription("sub_1")).status == SubscriptionStatus.PAUSED
