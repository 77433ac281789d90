"""Tests for POST /api/webhooks/payments status codes and bodies."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from factories import checkout_object, encode, make_event, sign
from paysync.core.exceptions import DownstreamFailure

pytestmark = pytest.mark.integration

URL = "/api/webhooks/payments"


def post_event(client: TestClient, event: dict, signature: str | None = None, body: bytes | None = None):
    body = body if body is not None else encode(event)
    headers = {"Content-Type": "application/json"}
    if signature is None:
        signature = sign(body)
    if signature:
        headers["creem-signature"] = signature
    return client.post(URL, content=body, headers=headers)


class TestAcknowledgement:
    def test_applied_event_returns_200(self, api_client: TestClient):
        response = post_event(api_client, make_event("evt_1", "checkout.completed", checkout_object()))

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "outcome": "applied"}
        assert "X-Request-ID" in response.headers

    def test_duplicate_returns_200(self, api_client: TestClient):
        event = make_event("evt_dup", "checkout.completed", checkout_object())

        assert post_event(api_client, event).json()["outcome"] == "applied"
        response = post_event(api_client, event)

        assert response.status_code == 200
        assert response.json()["outcome"] == "duplicate"

    def test_unknown_type_returns_200(self, api_client: TestClient):
        response = post_event(api_client, make_event("evt_x", "foo.bar", {}))

        assert response.status_code == 200
        assert response.json()["outcome"] == "unhandled"
        assert api_client.app.state.store.events == {}


class TestRejection:
    def test_missing_signature_returns_401(self, api_client: TestClient):
        response = post_event(api_client, make_event("evt_1", "checkout.completed", checkout_object()), signature="")

        assert response.status_code == 401
        assert response.json()["reason"] == "missing_signature"

    def test_bad_signature_returns_401(self, api_client: TestClient):
        response = post_event(
            api_client,
            make_event("evt_1", "checkout.completed", checkout_object()),
            signature="ab" * 32,
        )

        assert response.status_code == 401
        assert response.json()["reason"] == "signature_mismatch"
        assert api_client.app.state.store.subscriptions == {}

    def test_malformed_signature_returns_401(self, api_client: TestClient):
        response = post_event(api_client, make_event("evt_1", "checkout.completed", {}), signature="t=1,v1=abc")

        assert response.status_code == 401
        assert response.json()["reason"] == "malformed_signature"

    def test_missing_secret_returns_503(self, unconfigured_client: TestClient):
        response = post_event(unconfigured_client, make_event("evt_1", "checkout.completed", checkout_object()))

        assert response.status_code == 503
        assert "not configured" in response.json()["detail"].lower()

    def test_malformed_payload_returns_500(self, api_client: TestClient):
        body = b'{"id": "evt_1", "eventType": "checkout.completed", "created_at": "yesterday"}'
        response = post_event(api_client, {}, body=body)

        assert response.status_code == 500
        assert response.json() == {"detail": "Malformed payload"}

    def test_downstream_failure_returns_500_with_debug_id(self, api_client: TestClient):
        pipeline = api_client.app.state.pipeline
        pipeline.deduplicator.claim = AsyncMock(side_effect=DownstreamFailure("claim_event", "timed out"))

        response = post_event(api_client, make_event("evt_1", "checkout.completed", checkout_object()))

        assert response.status_code == 500
        assert "debug_id" in response.json()
        assert "timed out" not in response.json()["detail"]

    def test_failed_delivery_is_retryable(self, api_client: TestClient):
        event = make_event("evt_retry", "checkout.completed", checkout_object())
        handler = api_client.app.state.pipeline.router.resolve("checkout.completed")
        original_apply = handler.apply
        handler.apply = AsyncMock(side_effect=DownstreamFailure("save_subscription", "db down"))

        assert post_event(api_client, event).status_code == 500

        handler.apply = original_apply
        response = post_event(api_client, event)
        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"
