"""Unit tests for the Stripe gateway adapter.

No network calls: the StripeClient is replaced by a MagicMock and SSM by a
stub, except for webhook signature checks which run Stripe's real verifier.
"""

import datetime as dt
import hashlib
import hmac
import json
import time
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import stripe

from booking_engine.config import EngineSettings
from booking_engine.services.gateway import PaymentGatewayError, StripeGateway
from booking_engine.services.ssm_service import SSMServiceError

# === Test Configuration ===

TEST_SECRET_KEY = "sk_test_abc123xyz"
TEST_WEBHOOK_SECRET = "whsec_test_secret123"
TEST_BOOKING_ID = "BKG-ABC123DEF456"


class FakeIntent(dict):
    """Dict with attribute access to ``id``, enough of a StripeObject for paging."""

    @property
    def id(self) -> str:
        return self["id"]


def intent(payment_intent_id: str, **fields: Any) -> FakeIntent:
    return FakeIntent(
        {
            "id": payment_intent_id,
            "amount": 137000,
            "currency": "eur",
            "status": "succeeded",
            "created": 1782000000,
            "metadata": {"booking_id": TEST_BOOKING_ID},
            **fields,
        }
    )


def sign(payload: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


# === Test Fixtures ===


@pytest.fixture
def mock_ssm() -> MagicMock:
    ssm = MagicMock()
    ssm.get_parameter.side_effect = lambda name: {
        "/booking/dev/stripe/secret_key": TEST_SECRET_KEY,
        "/booking/dev/stripe/webhook_secret": TEST_WEBHOOK_SECRET,
    }[name]
    return ssm


@pytest.fixture
def gateway(mock_ssm: MagicMock) -> StripeGateway:
    return StripeGateway(settings=EngineSettings(environment="dev"), ssm=mock_ssm)


@pytest.fixture
def mock_stripe_client():
    with patch("booking_engine.services.gateway.StripeClient") as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value = mock_client
        yield mock_client


# === Initialization ===


class TestInitialization:
    def test_client_lazy_initialized(self, gateway: StripeGateway) -> None:
        assert gateway._client is None

    def test_secret_key_comes_from_ssm(self, gateway: StripeGateway, mock_ssm: MagicMock) -> None:
        with patch("booking_engine.services.gateway.StripeClient") as client_class:
            gateway._get_client()
            gateway._get_client()

        client_class.assert_called_once()
        assert client_class.call_args.args == (TEST_SECRET_KEY,)
        assert client_class.call_args.kwargs["max_network_retries"] == 2
        mock_ssm.get_parameter.assert_called_once_with("/booking/dev/stripe/secret_key")

    def test_explicit_key_skips_ssm(self, mock_ssm: MagicMock) -> None:
        gateway = StripeGateway(
            settings=EngineSettings(stripe_secret_key="sk_test_local"), ssm=mock_ssm
        )
        with patch("booking_engine.services.gateway.StripeClient") as client_class:
            gateway._get_client()

        assert client_class.call_args.args == ("sk_test_local",)
        mock_ssm.get_parameter.assert_not_called()

    def test_raises_error_when_ssm_fails(self, gateway: StripeGateway, mock_ssm) -> None:
        mock_ssm.get_parameter.side_effect = SSMServiceError("SSM error")

        with pytest.raises(PaymentGatewayError) as exc_info:
            gateway._get_client()

        assert "Failed to load Stripe secret_key" in str(exc_info.value)


# === Checkout sessions ===


class TestCheckoutSessions:
    def test_creates_session_with_booking_metadata(
        self, gateway: StripeGateway, mock_stripe_client
    ) -> None:
        expires_at = int(time.time()) + 1800
        session = MagicMock()
        session.id = "cs_test_123"
        session.url = "https://checkout.stripe.com/c/pay/cs_test_123"
        session.expires_at = expires_at
        session.get.side_effect = {"payment_intent": None}.get
        mock_stripe_client.checkout.sessions.create.return_value = session

        result = gateway.create_checkout_session(
            booking_id=TEST_BOOKING_ID,
            customer_id="CUST-1",
            customer_email="guest@example.com",
            amount=137000,
            currency="EUR",
            description="Ocean Room, 7 nights",
            success_url="https://example.com/success",
            cancel_url="https://example.com/cancel",
            metadata={"quote_id": "QTE-1"},
        )

        assert result.session_id == "cs_test_123"
        assert result.checkout_url == "https://checkout.stripe.com/c/pay/cs_test_123"
        assert result.expires_at == dt.datetime.fromtimestamp(expires_at, tz=dt.UTC)
        assert result.payment_intent_id is None

        call = mock_stripe_client.checkout.sessions.create.call_args
        params = call.kwargs["params"]
        assert call.kwargs["options"] == {"idempotency_key": f"checkout_{TEST_BOOKING_ID}"}
        assert params["mode"] == "payment"
        assert params["client_reference_id"] == TEST_BOOKING_ID
        assert params["line_items"][0]["price_data"]["currency"] == "eur"
        assert params["line_items"][0]["price_data"]["unit_amount"] == 137000
        assert params["metadata"] == {
            "booking_id": TEST_BOOKING_ID,
            "customer_id": "CUST-1",
            "quote_id": "QTE-1",
        }
        assert params["payment_intent_data"]["metadata"] == params["metadata"]
        # Margin over Stripe's 30 minute minimum for request latency
        assert params["expires_at"] > int(time.time()) + 30 * 60

    def test_connection_error_is_retryable(
        self, gateway: StripeGateway, mock_stripe_client
    ) -> None:
        mock_stripe_client.checkout.sessions.create.side_effect = stripe.APIConnectionError(
            "Request timed out"
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            gateway.create_checkout_session(
                booking_id=TEST_BOOKING_ID,
                customer_id="CUST-1",
                customer_email="guest@example.com",
                amount=100,
                currency="EUR",
                description="x",
                success_url="https://example.com/s",
                cancel_url="https://example.com/c",
            )

        assert exc_info.value.retryable is True
        assert "Failed to create checkout session" in str(exc_info.value)

    def test_expire_session(self, gateway: StripeGateway, mock_stripe_client) -> None:
        gateway.expire_checkout_session("cs_test_123")

        mock_stripe_client.checkout.sessions.expire.assert_called_once_with("cs_test_123")

    def test_expire_failure_is_wrapped(self, gateway: StripeGateway, mock_stripe_client) -> None:
        mock_stripe_client.checkout.sessions.expire.side_effect = stripe.InvalidRequestError(
            "Session is not open", None, code="checkout_session_not_open"
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            gateway.expire_checkout_session("cs_test_123")

        assert exc_info.value.stripe_error_code == "checkout_session_not_open"
        assert exc_info.value.retryable is False


# === Webhook signatures ===


class TestVerifyWebhookSignature:
    def test_valid_signature_returns_plain_dict(self, gateway: StripeGateway) -> None:
        payload = json.dumps(
            {"id": "evt_1", "object": "event", "type": "charge.refunded", "data": {"object": {}}}
        ).encode()

        event = gateway.verify_webhook_signature(payload, sign(payload))

        assert type(event) is dict
        assert event["id"] == "evt_1"
        assert event["type"] == "charge.refunded"

    def test_invalid_signature(self, gateway: StripeGateway) -> None:
        payload = b'{"id": "evt_1", "object": "event"}'

        with pytest.raises(PaymentGatewayError, match="Invalid webhook signature"):
            gateway.verify_webhook_signature(payload, sign(payload, secret="whsec_wrong"))

    def test_signed_garbage_payload(self, gateway: StripeGateway) -> None:
        payload = b"not json"

        with pytest.raises(PaymentGatewayError, match="Invalid webhook payload"):
            gateway.verify_webhook_signature(payload, sign(payload))

    def test_webhook_secret_is_cached(self, gateway: StripeGateway, mock_ssm) -> None:
        payload = b'{"id": "evt_1", "object": "event"}'

        gateway.verify_webhook_signature(payload, sign(payload))
        gateway.verify_webhook_signature(payload, sign(payload))

        mock_ssm.get_parameter.assert_called_once_with("/booking/dev/stripe/webhook_secret")


# === PaymentIntent lookups ===


class TestRetrievePayment:
    def test_maps_intent_with_refunds(self, gateway: StripeGateway, mock_stripe_client) -> None:
        mock_stripe_client.payment_intents.retrieve.return_value = intent(
            "pi_1", latest_charge={"id": "ch_1", "amount_refunded": 5000}
        )

        payment = gateway.retrieve_payment("pi_1")

        assert payment is not None
        assert payment.payment_intent_id == "pi_1"
        assert payment.amount == 137000
        assert payment.currency == "EUR"
        assert payment.refunded_amount == 5000
        assert payment.created == dt.datetime.fromtimestamp(1782000000, tz=dt.UTC)
        assert payment.metadata == {"booking_id": TEST_BOOKING_ID}
        mock_stripe_client.payment_intents.retrieve.assert_called_once_with(
            "pi_1", params={"expand": ["latest_charge"]}
        )

    def test_unexpanded_charge_counts_as_unrefunded(
        self, gateway: StripeGateway, mock_stripe_client
    ) -> None:
        mock_stripe_client.payment_intents.retrieve.return_value = intent(
            "pi_1", latest_charge="ch_1"
        )

        payment = gateway.retrieve_payment("pi_1")

        assert payment is not None
        assert payment.refunded_amount == 0

    def test_missing_intent_returns_none(self, gateway: StripeGateway, mock_stripe_client) -> None:
        mock_stripe_client.payment_intents.retrieve.side_effect = stripe.InvalidRequestError(
            "No such payment_intent: 'pi_gone'", "intent", code="resource_missing"
        )

        assert gateway.retrieve_payment("pi_gone") is None

    def test_rate_limit_is_retryable(self, gateway: StripeGateway, mock_stripe_client) -> None:
        mock_stripe_client.payment_intents.retrieve.side_effect = stripe.RateLimitError(
            "Too many requests"
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            gateway.retrieve_payment("pi_1")

        assert exc_info.value.retryable is True


class TestListPayments:
    def test_follows_pagination(self, gateway: StripeGateway, mock_stripe_client) -> None:
        first = MagicMock(data=[intent("pi_1"), intent("pi_2")], has_more=True)
        second = MagicMock(data=[intent("pi_3")], has_more=False)
        mock_stripe_client.payment_intents.list.side_effect = [first, second]
        now = dt.datetime.now(dt.UTC)

        payments, calls = gateway.list_payments(now - dt.timedelta(days=30), now, limit=10)

        assert [p.payment_intent_id for p in payments] == ["pi_1", "pi_2", "pi_3"]
        assert calls == 2
        second_params = mock_stripe_client.payment_intents.list.call_args_list[1].kwargs["params"]
        assert second_params["starting_after"] == "pi_2"
        assert second_params["limit"] == 10
        assert second_params["created"]["lte"] == int(now.timestamp())

    def test_stops_at_limit(self, gateway: StripeGateway, mock_stripe_client) -> None:
        page = MagicMock(data=[intent("pi_1"), intent("pi_2")], has_more=True)
        mock_stripe_client.payment_intents.list.return_value = page
        now = dt.datetime.now(dt.UTC)

        payments, calls = gateway.list_payments(now - dt.timedelta(days=1), now, limit=1)

        assert [p.payment_intent_id for p in payments] == ["pi_1"]
        assert calls == 1


# === Refunds ===


class TestCreateRefund:
    def test_creates_refund_with_idempotency_key(
        self, gateway: StripeGateway, mock_stripe_client
    ) -> None:
        refund = MagicMock(id="re_123", amount=5000, status="pending")
        mock_stripe_client.refunds.create.return_value = refund

        result = gateway.create_refund(
            payment_intent_id="pi_1",
            amount=5000,
            reason="requested_by_customer",
            metadata={"booking_id": TEST_BOOKING_ID},
            idempotency_key="refund_PAY-1_0_5000",
        )

        assert (result.refund_id, result.amount, result.status) == ("re_123", 5000, "pending")
        mock_stripe_client.refunds.create.assert_called_once_with(
            params={
                "payment_intent": "pi_1",
                "amount": 5000,
                "reason": "requested_by_customer",
                "metadata": {"booking_id": TEST_BOOKING_ID},
            },
            options={"idempotency_key": "refund_PAY-1_0_5000"},
        )

    def test_refund_error_keeps_stripe_code(
        self, gateway: StripeGateway, mock_stripe_client
    ) -> None:
        mock_stripe_client.refunds.create.side_effect = stripe.InvalidRequestError(
            "Charge has already been refunded", None, code="charge_already_refunded"
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            gateway.create_refund(
                payment_intent_id="pi_1",
                amount=5000,
                reason="duplicate",
                metadata={},
                idempotency_key="k",
            )

        assert exc_info.value.stripe_error_code == "charge_already_refunded"


def test_payload_hash() -> None:
    assert StripeGateway.compute_payload_hash(b"abc") == hashlib.sha256(b"abc").hexdigest()
