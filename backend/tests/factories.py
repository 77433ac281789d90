"""Builders for signed provider deliveries used across test groups."""

import json
from datetime import UTC, datetime, timedelta

from paysync.webhooks.signature import compute_signature

WEBHOOK_SECRET = "whsec_test_secret"

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def make_event(
    event_id: str,
    event_type: str,
    obj: dict,
    at: datetime | None = None,
) -> dict:
    """Build a provider-style envelope dict."""
    return {
        "id": event_id,
        "eventType": event_type,
        "created_at": epoch_ms(at or BASE_TIME),
        "object": obj,
    }


def subscription_object(
    subscription_id: str = "sub_001",
    customer_id: str = "cust_001",
    period_end: datetime | None = None,
    **extra,
) -> dict:
    end = period_end or BASE_TIME + timedelta(days=30)
    obj = {
        "id": subscription_id,
        "object": "subscription",
        "product": "prod_pro",
        "customer": {"id": customer_id, "email": f"{customer_id}@example.com"},
        "status": "active",
        "current_period_start_date": (end - timedelta(days=30)).isoformat(),
        "current_period_end_date": end.isoformat(),
    }
    obj.update(extra)
    return obj


def checkout_object(subscription_id: str = "sub_001", customer_id: str = "cust_001", **extra) -> dict:
    obj = {
        "id": f"ch_{subscription_id}",
        "object": "checkout",
        "customer": {"id": customer_id, "email": f"{customer_id}@example.com"},
        "product": "prod_pro",
        "subscription": subscription_object(subscription_id, customer_id),
    }
    obj.update(extra)
    return obj


def encode(event: dict) -> bytes:
    return json.dumps(event).encode("utf-8")


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(body, secret)
