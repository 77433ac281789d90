"""Tests for envelope and payload parsing."""

from datetime import UTC, datetime

import pytest

from paysync.core.exceptions import MalformedPayload
from paysync.domain.states import EventType
from paysync.webhooks.events import (
    CheckoutObject,
    RefundObject,
    SubscriptionObject,
    parse_event,
    parse_object,
)

from factories import encode, make_event

pytestmark = pytest.mark.unit


def test_parse_event_maps_wire_keys():
    event = parse_event(encode(make_event("evt_1", "subscription.paid", {"id": "sub_1"})))

    assert event.id == "evt_1"
    assert event.event_type == "subscription.paid"
    assert event.known_type == EventType.SUBSCRIPTION_PAID
    assert event.object == {"id": "sub_1"}


def test_created_at_is_epoch_milliseconds_utc():
    body = b'{"id":"e","eventType":"x.y","created_at":1767225600123,"object":{}}'
    event = parse_event(body)
    assert event.created_at == datetime(2026, 1, 1, 0, 0, 0, 123000, tzinfo=UTC)


def test_created_at_accepts_digit_string():
    body = b'{"id":"e","eventType":"x.y","created_at":"1767225600000","object":{}}'
    assert parse_event(body).created_at == datetime(2026, 1, 1, tzinfo=UTC)


def test_unknown_type_parses_with_no_known_type():
    event = parse_event(encode(make_event("evt_1", "foo.bar", {})))
    assert event.known_type is None


def test_extra_envelope_keys_are_ignored():
    raw = make_event("evt_1", "refund.created", {"id": "ref_1"})
    raw["mode"] = "test"
    assert parse_event(encode(raw)).id == "evt_1"


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[]",
        b'{"eventType":"x.y","created_at":1,"object":{}}',
        b'{"id":"","eventType":"x.y","created_at":1,"object":{}}',
        b'{"id":"e","created_at":1,"object":{}}',
        b'{"id":"e","eventType":"x.y","object":{}}',
        b'{"id":"e","eventType":"x.y","created_at":true,"object":{}}',
        b'{"id":"e","eventType":"x.y","created_at":1,"object":"sub_1"}',
    ],
)
def test_malformed_envelopes(body):
    with pytest.raises(MalformedPayload):
        parse_event(body)


def test_subscription_object_aliases_and_expanded_refs():
    event = parse_event(
        encode(
            make_event(
                "evt_1",
                "subscription.paid",
                {
                    "id": "sub_1",
                    "product": {"id": "prod_1", "name": "Pro"},
                    "customer": "cust_1",
                    "current_period_end_date": "2026-04-01T00:00:00Z",
                },
            )
        )
    )
    payload = parse_object(event, SubscriptionObject)

    assert payload.product_id == "prod_1"
    assert payload.customer.id == "cust_1"
    assert payload.current_period_end == datetime(2026, 4, 1, tzinfo=UTC)


def test_naive_datetimes_are_treated_as_utc():
    event = parse_event(
        encode(make_event("evt_1", "subscription.paid", {"id": "sub_1", "current_period_end": "2026-04-01T00:00:00"}))
    )
    assert parse_object(event, SubscriptionObject).current_period_end.tzinfo == UTC


def test_checkout_with_nested_subscription():
    event = parse_event(
        encode(
            make_event(
                "evt_1",
                "checkout.completed",
                {"id": "ch_1", "customer": {"id": "cust_1"}, "subscription": "sub_1"},
            )
        )
    )
    payload = parse_object(event, CheckoutObject)
    assert payload.subscription.id == "sub_1"
    assert payload.order is None


def test_refund_refs_accept_id_or_object():
    event = parse_event(
        encode(
            make_event(
                "evt_1",
                "refund.created",
                {"id": "ref_1", "subscription": {"id": "sub_1"}, "order": "ord_1"},
            )
        )
    )
    payload = parse_object(event, RefundObject)
    assert payload.subscription_id == "sub_1"
    assert payload.order_id == "ord_1"


def test_object_missing_id_is_malformed():
    event = parse_event(encode(make_event("evt_1", "subscription.paid", {"status": "active"})))
    with pytest.raises(MalformedPayload, match="subscription.paid"):
        parse_object(event, SubscriptionObject)
