"""Contract tests for POST /api/webhooks/stripe.

Status codes tell Stripe whether to redeliver:
- 400: missing or invalid signature, unparseable payload
- 200: processed, duplicate, unhandled or otherwise acknowledged
- 500: deferred; Stripe retries and the event can also be replayed
"""

import json
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_400_BAD_REQUEST,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from booking_api.main import app
from booking_engine.models.checkout import CheckoutRequest, CheckoutResult
from booking_engine.services.checkout import CheckoutOrchestrator

# === Test Configuration ===

WEBHOOK_URL = "/api/webhooks/stripe"
PAYMENT_INTENT = "pi_3ContractTest01"


# === Test Fixtures ===


@pytest.fixture
def client(tables: Any, catalog_seed: None, gateway: Any) -> Generator[TestClient, None, None]:
    """TestClient whose services run against moto and the fake gateway."""
    with patch("booking_api.dependencies.get_payment_gateway", return_value=gateway):
        yield TestClient(app)


@pytest.fixture
def pending(
    checkout: CheckoutOrchestrator,
    make_checkout_request: Callable[..., CheckoutRequest],
) -> CheckoutResult:
    return checkout.create_checkout(make_checkout_request())


def completed_event(
    make_event: Callable[..., dict[str, Any]], booking_id: str, session_id: str = "cs_x"
) -> dict[str, Any]:
    return make_event(
        "checkout.session.completed",
        {
            "id": session_id,
            "object": "checkout.session",
            "payment_intent": PAYMENT_INTENT,
            "payment_status": "paid",
            "metadata": {"booking_id": booking_id},
        },
    )


def post_signed(
    client: TestClient, signed: Callable[..., tuple[bytes, str]], event: dict[str, Any]
):
    payload, signature = signed(event)
    return client.post(
        WEBHOOK_URL,
        content=payload,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


# === Signature validation ===


class TestSignatureValidation:
    def test_missing_signature_header(self, client: TestClient) -> None:
        response = client.post(WEBHOOK_URL, content=b"{}")

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "SIGNATURE_ERROR"

    def test_invalid_signature(
        self, client: TestClient, make_event: Callable[..., dict[str, Any]]
    ) -> None:
        payload = json.dumps(make_event("charge.refunded", {"id": "ch_1"})).encode()

        response = client.post(
            WEBHOOK_URL,
            content=payload,
            headers={"Stripe-Signature": "t=1700000000,v1=0123456789abcdef"},
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "SIGNATURE_ERROR"
        assert body["retryable"] is False


# === Processing ===


class TestProcessing:
    def test_checkout_completed(
        self,
        client: TestClient,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        signed: Callable[..., tuple[bytes, str]],
    ) -> None:
        event = completed_event(make_event, pending.booking_id, pending.session_id)

        response = post_signed(client, signed, event)

        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert body["received"] is True
        assert body["event_id"] == event["id"]
        assert body["event_type"] == "checkout.session.completed"
        assert body["processing_result"] == "processed"

    def test_redelivery_is_acknowledged_as_duplicate(
        self,
        client: TestClient,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        signed: Callable[..., tuple[bytes, str]],
    ) -> None:
        event = completed_event(make_event, pending.booking_id, pending.session_id)
        post_signed(client, signed, event)

        response = post_signed(client, signed, event)

        assert response.status_code == HTTP_200_OK
        assert response.json()["processing_result"] == "duplicate"

    def test_unhandled_event_type(
        self,
        client: TestClient,
        make_event: Callable[..., dict[str, Any]],
        signed: Callable[..., tuple[bytes, str]],
    ) -> None:
        response = post_signed(client, signed, make_event("customer.created", {"id": "cus_1"}))

        assert response.status_code == HTTP_200_OK
        assert response.json()["processing_result"] == "unhandled"

    def test_deferred_event_asks_for_redelivery(
        self,
        client: TestClient,
        make_event: Callable[..., dict[str, Any]],
        signed: Callable[..., tuple[bytes, str]],
    ) -> None:
        event = completed_event(make_event, "BKG-NOTYETVISIBLE")

        response = post_signed(client, signed, event)

        assert response.status_code == HTTP_500_INTERNAL_SERVER_ERROR
        body = response.json()
        assert body["error_code"] == "SERVER_ERROR"
        assert body["retryable"] is True
