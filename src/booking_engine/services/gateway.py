"""Stripe payment gateway adapter.

Wraps the StripeClient for the calls the engine makes: Checkout session
creation and expiry, webhook signature verification, PaymentIntent lookups
for reconciliation, and refunds. API keys come from SSM Parameter Store.
Every call goes through an HTTP client with a bounded timeout; a timeout
surfaces as a retryable PaymentGatewayError like any other failure.
"""

import datetime as dt
import hashlib
import json
import logging
from functools import lru_cache
from typing import Any

import stripe
from stripe import StripeClient

from ..config import EngineSettings, get_settings
from ..models.errors import is_stripe_error_retryable
from ..models.payment import CheckoutSession, GatewayPayment, GatewayRefund
from .ssm_service import SSMService, SSMServiceError, get_ssm_service

logger = logging.getLogger(__name__)

# Stripe's maximum page size for list endpoints
LIST_PAGE_SIZE = 100


class PaymentGatewayError(Exception):
    """Raised when a Stripe operation fails."""

    def __init__(
        self,
        message: str,
        stripe_error_code: str | None = None,
        retryable: bool = False,
    ) -> None:
        """Initialize with message and optional Stripe error code.

        Args:
            message: Human-readable error message.
            stripe_error_code: Stripe-specific error code if available.
            retryable: Whether retrying the same call may succeed.
        """
        super().__init__(message)
        self.stripe_error_code = stripe_error_code
        self.retryable = retryable


def _wrap_stripe_error(action: str, error: stripe.StripeError) -> PaymentGatewayError:
    error_code = getattr(error, "code", None)
    retryable = isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError)) or (
        is_stripe_error_retryable(error_code)
    )
    logger.error("Stripe %s failed: %s (code: %s)", action, error, error_code)
    return PaymentGatewayError(
        f"Failed to {action}: {error}", stripe_error_code=error_code, retryable=retryable
    )


class StripeGateway:
    """Gateway operations backed by Stripe.

    Usage:
        gateway = get_payment_gateway()
        session = gateway.create_checkout_session(
            booking_id="BKG-ABC123DEF456",
            customer_id="CUST-1F2E3D4C5B6A7980",
            customer_email="guest@example.com",
            amount=137000,
            currency="EUR",
            description="Ocean room, 7 nights",
            success_url="https://example.com/success",
            cancel_url="https://example.com/cancel",
        )
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        ssm: SSMService | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._ssm = ssm
        self._client: StripeClient | None = None
        self._webhook_secret: str | None = None

    def _secret(self, name: str, override: str | None) -> str:
        if override:
            return override
        ssm = self._ssm or get_ssm_service()
        try:
            return ssm.get_parameter(f"{self._settings.ssm_prefix}/stripe/{name}")
        except SSMServiceError as e:
            raise PaymentGatewayError(f"Failed to load Stripe {name}: {e}") from e

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            PaymentGatewayError: If credentials cannot be retrieved.
        """
        if self._client is None:
            secret_key = self._secret("secret_key", self._settings.stripe_secret_key)
            self._client = StripeClient(
                secret_key,
                http_client=stripe.RequestsClient(timeout=self._settings.gateway_timeout_seconds),
                max_network_retries=self._settings.gateway_max_network_retries,
            )
            logger.info("Stripe client initialized for environment: %s", self._settings.environment)
        return self._client

    def _get_webhook_secret(self) -> str:
        if self._webhook_secret is None:
            self._webhook_secret = self._secret(
                "webhook_secret", self._settings.stripe_webhook_secret
            )
        return self._webhook_secret

    def create_checkout_session(
        self,
        *,
        booking_id: str,
        customer_id: str,
        customer_email: str,
        amount: int,
        currency: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        """Create a Stripe Checkout session for a booking.

        The booking id doubles as the idempotency key so a retried request
        never opens a second session for the same draft.

        Args:
            booking_id: Booking being paid for.
            customer_id: Customer reference, stored as metadata.
            customer_email: Prefills Checkout and receives the receipt.
            amount: Grand total in minor units.
            currency: ISO-4217 code.
            description: Line item description.
            success_url: Redirect on success (supports {CHECKOUT_SESSION_ID}).
            cancel_url: Redirect on cancel.
            metadata: Extra correlation metadata.

        Returns:
            The created CheckoutSession.

        Raises:
            PaymentGatewayError: If session creation fails or times out.
        """
        client = self._get_client()

        session_metadata = {"booking_id": booking_id, "customer_id": customer_id}
        if metadata:
            session_metadata.update(metadata)

        expires_at = dt.datetime.now(dt.UTC) + dt.timedelta(
            minutes=self._settings.checkout_session_ttl_minutes
        )

        try:
            logger.info(
                "Creating Stripe checkout session for booking %s, amount %d %s",
                booking_id,
                amount,
                currency,
            )
            session = client.checkout.sessions.create(
                params={
                    "mode": "payment",
                    "payment_method_types": ["card"],
                    "line_items": [
                        {
                            "price_data": {
                                "currency": currency.lower(),
                                "unit_amount": amount,
                                "product_data": {
                                    "name": "Booking",
                                    "description": description,
                                },
                            },
                            "quantity": 1,
                        }
                    ],
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "customer_email": customer_email,
                    "client_reference_id": booking_id,
                    "metadata": session_metadata,
                    "payment_intent_data": {"metadata": session_metadata},
                    "expires_at": int(expires_at.timestamp()),
                },
                options={"idempotency_key": f"checkout_{booking_id}"},
            )
        except stripe.StripeError as e:
            raise _wrap_stripe_error("create checkout session", e) from e

        logger.info("Checkout session created: %s for booking %s", session.id, booking_id)
        return CheckoutSession(
            session_id=session.id,
            checkout_url=session.url,
            expires_at=dt.datetime.fromtimestamp(session.expires_at, tz=dt.UTC),
            payment_intent_id=session.get("payment_intent"),
        )

    def expire_checkout_session(self, session_id: str) -> None:
        """Expire an open Checkout session so it can no longer be paid.

        Raises:
            PaymentGatewayError: If Stripe rejects the call.
        """
        try:
            self._get_client().checkout.sessions.expire(session_id)
            logger.info("Checkout session expired: %s", session_id)
        except stripe.StripeError as e:
            raise _wrap_stripe_error("expire checkout session", e) from e

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body bytes.
            signature: Stripe-Signature header value.

        Returns:
            Parsed Stripe event dictionary.

        Raises:
            PaymentGatewayError: If the signature or payload is invalid.
        """
        webhook_secret = self._get_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", e)
            raise PaymentGatewayError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning("Unparseable webhook payload: %s", e)
            raise PaymentGatewayError("Invalid webhook payload") from e

        logger.info("Webhook signature verified for event: %s", event["id"])
        # Handlers work on plain dicts, not StripeObjects
        parsed: dict[str, Any] = json.loads(payload)
        return parsed

    def retrieve_payment(self, payment_intent_id: str) -> GatewayPayment | None:
        """Fetch the authoritative state of a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx).

        Returns:
            GatewayPayment, or None when Stripe has no such PaymentIntent.

        Raises:
            PaymentGatewayError: On any other failure, including timeouts.
        """
        try:
            intent = self._get_client().payment_intents.retrieve(
                payment_intent_id, params={"expand": ["latest_charge"]}
            )
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                logger.warning("PaymentIntent not found at Stripe: %s", payment_intent_id)
                return None
            raise _wrap_stripe_error("retrieve payment intent", e) from e
        except stripe.StripeError as e:
            raise _wrap_stripe_error("retrieve payment intent", e) from e

        return _to_gateway_payment(intent)

    def list_payments(
        self,
        created_from: dt.datetime,
        created_to: dt.datetime,
        limit: int,
    ) -> tuple[list[GatewayPayment], int]:
        """List PaymentIntents created inside a window.

        Args:
            created_from: Window start (inclusive).
            created_to: Window end (inclusive).
            limit: Maximum number of PaymentIntents to return.

        Returns:
            Tuple of (payments, number of API calls made).

        Raises:
            PaymentGatewayError: If a page cannot be fetched.
        """
        params: dict[str, Any] = {
            "created": {
                "gte": int(created_from.timestamp()),
                "lte": int(created_to.timestamp()),
            },
            "limit": min(LIST_PAGE_SIZE, limit),
            "expand": ["data.latest_charge"],
        }
        payments: list[GatewayPayment] = []
        calls = 0
        try:
            while len(payments) < limit:
                page = self._get_client().payment_intents.list(params=params)
                calls += 1
                payments.extend(_to_gateway_payment(intent) for intent in page.data)
                if not page.has_more or not page.data:
                    break
                params["starting_after"] = page.data[-1].id
        except stripe.StripeError as e:
            raise _wrap_stripe_error("list payment intents", e) from e

        return payments[:limit], calls

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount: int,
        reason: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> GatewayRefund:
        """Create a refund for a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx).
            amount: Refund amount in minor units.
            reason: Stripe refund reason.
            metadata: Correlation metadata stored on the refund.
            idempotency_key: Prevents duplicate refunds on retry.

        Returns:
            The created GatewayRefund.

        Raises:
            PaymentGatewayError: If refund creation fails.
        """
        try:
            logger.info(
                "Creating refund for PaymentIntent %s, amount %d", payment_intent_id, amount
            )
            refund = self._get_client().refunds.create(
                params={
                    "payment_intent": payment_intent_id,
                    "amount": amount,
                    "reason": reason,
                    "metadata": metadata,
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            raise _wrap_stripe_error("create refund", e) from e

        logger.info("Refund created: %s for PaymentIntent %s", refund.id, payment_intent_id)
        return GatewayRefund(refund_id=refund.id, amount=refund.amount, status=refund.status)

    @staticmethod
    def compute_payload_hash(payload: bytes) -> str:
        """SHA-256 of a webhook payload, stored alongside ledger rows."""
        return hashlib.sha256(payload).hexdigest()


def _to_gateway_payment(intent: Any) -> GatewayPayment:
    charge = intent.get("latest_charge")
    refunded = 0
    # Unexpanded charges are plain ids
    if charge is not None and not isinstance(charge, str):
        refunded = int(charge.get("amount_refunded") or 0)

    created = intent.get("created")
    return GatewayPayment(
        payment_intent_id=intent["id"],
        amount=int(intent.get("amount") or 0),
        currency=str(intent.get("currency") or "").upper(),
        status=str(intent.get("status") or ""),
        refunded_amount=refunded,
        created=dt.datetime.fromtimestamp(created, tz=dt.UTC) if created else None,
        metadata={str(k): str(v) for k, v in (intent.get("metadata") or {}).items()},
    )


@lru_cache(maxsize=1)
def get_payment_gateway() -> StripeGateway:
    """Get the shared StripeGateway instance."""
    return StripeGateway()
