"""Tests for InMemoryStateStore compare-and-set semantics."""

from dataclasses import replace

import pytest

from factories import BASE_TIME
from paysync.domain.states import CustomerState, SubscriptionState, SubscriptionStatus
from paysync.storage import InMemoryStateStore, StateStore

pytestmark = pytest.mark.unit


def test_satisfies_state_store_protocol(memory_store):
    assert isinstance(memory_store, StateStore)


async def test_insert_then_conflicting_insert(memory_store):
    state = SubscriptionState(id="sub_1", status=SubscriptionStatus.ACTIVE)

    assert await memory_store.save_subscription(state) is True
    assert await memory_store.save_subscription(state) is False
    assert (await memory_store.get_subscription("sub_1")).version == 1


async def test_update_requires_current_version(memory_store):
    await memory_store.save_subscription(SubscriptionState(id="sub_1"))
    loaded = await memory_store.get_subscription("sub_1")

    assert await memory_store.save_subscription(replace(loaded, status=SubscriptionStatus.PAUSED)) is True
    # Same read again: version is now stale
    assert await memory_store.save_subscription(replace(loaded, status=SubscriptionStatus.ACTIVE)) is False

    stored = await memory_store.get_subscription("sub_1")
    assert stored.status == SubscriptionStatus.PAUSED
    assert stored.version == 2


async def test_update_of_missing_row_fails(memory_store):
    assert await memory_store.save_customer(CustomerState(id="cust_1", version=3)) is False


async def test_getters_return_copies(memory_store):
    await memory_store.save_customer(CustomerState(id="cust_1", email="a@example.com"))
    loaded = await memory_store.get_customer("cust_1")
    loaded.email = "changed@example.com"

    assert (await memory_store.get_customer("cust_1")).email == "a@example.com"


async def test_find_customer_by_email_is_case_insensitive(memory_store):
    await memory_store.save_customer(CustomerState(id="cust_1", email="Ada@Example.com"))

    found = await memory_store.find_customer_by_email("ada@example.COM")
    assert found.id == "cust_1"
    assert await memory_store.find_customer_by_email("nobody@example.com") is None


async def test_ping():
    assert await InMemoryStateStore().ping() is True


async def test_get_event_unknown(memory_store):
    assert await memory_store.get_event("evt_missing") is None
    await memory_store.claim_event("evt_1", "x.y", BASE_TIME, BASE_TIME)
    assert (await memory_store.get_event("evt_1")).event_type == "x.y"
