"""Pytest configuration and fixtures for booking engine tests.

This module provides reusable fixtures for testing:
- DynamoDB and SSM mocking with moto
- Seeded catalog data (rooms, beds, camp session, add-ons, promo codes)
- A fake Stripe gateway with real webhook signature verification
- Engine services wired against the mocked tables
"""

import datetime as dt
import hashlib
import hmac
import json
import os
import time
import uuid
from collections.abc import Callable, Generator
from decimal import Decimal
from typing import Any

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-booking")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

# Only set fake credentials for moto if no real credentials are present
if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from booking_api.dependencies import reset_services  # noqa: E402
from booking_engine.config import EngineSettings, get_settings  # noqa: E402
from booking_engine.models.booking import CustomerCreate  # noqa: E402
from booking_engine.models.checkout import CheckoutRequest  # noqa: E402
from booking_engine.models.line_items import AddOnLine, CampLine, RoomLine  # noqa: E402
from booking_engine.models.payment import (  # noqa: E402
    CheckoutSession,
    GatewayPayment,
    GatewayRefund,
)
from booking_engine.services.audit import AuditLogService  # noqa: E402
from booking_engine.services.bookings import BookingRepository  # noqa: E402
from booking_engine.services.catalog import CatalogService  # noqa: E402
from booking_engine.services.checkout import CheckoutOrchestrator  # noqa: E402
from booking_engine.services.conflicts import ConflictChecker  # noqa: E402
from booking_engine.services.customers import CustomerService  # noqa: E402
from booking_engine.services.dynamodb import DynamoDBService  # noqa: E402
from booking_engine.services.gateway import PaymentGatewayError, StripeGateway  # noqa: E402
from booking_engine.services.payment_service import PaymentService  # noqa: E402
from booking_engine.services.pricing import PricingEngine  # noqa: E402
from booking_engine.services.reconciliation import ReconciliationSweep  # noqa: E402
from booking_engine.services.refunds import RefundService  # noqa: E402
from booking_engine.services.schema import create_tables  # noqa: E402
from booking_engine.services.webhook_handler import WebhookProcessor  # noqa: E402

TABLE_PREFIX = "test-booking"
WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]

ROOM_ID = "ROOM-OCEAN-1"
GARDEN_ROOM_ID = "ROOM-GARDEN-2"
CAMP_ID = "CAMP-2026-W27"
BED_A = "BED-DORM-A1"
BED_B = "BED-DORM-A2"
SURF_LESSON = "ADDON-SURF-LESSON"
BOARD_RENTAL = "ADDON-BOARD"

CHECK_IN = dt.date(2026, 7, 1)
CHECK_OUT = dt.date(2026, 7, 8)


# === Fake Stripe gateway ===


class FakeGateway(StripeGateway):
    """In-memory stand-in for Stripe.

    Webhook signature verification is inherited, so signed test payloads go
    through stripe.Webhook.construct_event with the test secret.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        super().__init__(settings=settings)
        self.sessions: dict[str, dict[str, Any]] = {}
        self.intents: dict[str, GatewayPayment] = {}
        self.lookup_errors: dict[str, PaymentGatewayError] = {}
        self.refunds: list[dict[str, Any]] = []
        self.expired: list[str] = []
        self.fail_with: PaymentGatewayError | None = None
        self.retrieve_calls = 0

    def create_checkout_session(self, **kwargs: Any) -> CheckoutSession:
        if self.fail_with is not None:
            raise self.fail_with
        session_id = f"cs_test_{uuid.uuid4().hex[:12]}"
        self.sessions[session_id] = kwargs
        return CheckoutSession(
            session_id=session_id,
            checkout_url=f"https://checkout.stripe.test/pay/{session_id}",
            expires_at=dt.datetime.now(dt.UTC) + dt.timedelta(minutes=30),
        )

    def expire_checkout_session(self, session_id: str) -> None:
        self.expired.append(session_id)

    def retrieve_payment(self, payment_intent_id: str) -> GatewayPayment | None:
        self.retrieve_calls += 1
        if payment_intent_id in self.lookup_errors:
            raise self.lookup_errors[payment_intent_id]
        return self.intents.get(payment_intent_id)

    def list_payments(
        self, created_from: dt.datetime, created_to: dt.datetime, limit: int
    ) -> tuple[list[GatewayPayment], int]:
        return list(self.intents.values())[:limit], 1

    def create_refund(self, **kwargs: Any) -> GatewayRefund:
        if self.fail_with is not None:
            raise self.fail_with
        self.refunds.append(kwargs)
        return GatewayRefund(
            refund_id=f"re_test_{len(self.refunds)}", amount=kwargs["amount"], status="succeeded"
        )

    def add_intent(
        self,
        payment_intent_id: str,
        amount: int,
        status: str = "succeeded",
        refunded_amount: int = 0,
        metadata: dict[str, str] | None = None,
    ) -> GatewayPayment:
        intent = GatewayPayment(
            payment_intent_id=payment_intent_id,
            amount=amount,
            currency="eur",
            status=status,
            refunded_amount=refunded_amount,
            created=dt.datetime.now(dt.UTC),
            metadata=metadata or {},
        )
        self.intents[payment_intent_id] = intent
        return intent


# === Environment and singleton fixtures ===


@pytest.fixture(autouse=True)
def reset_state() -> Generator[None, None, None]:
    """Reset cached services and settings before and after each test.

    Tests using mock_aws need fresh boto3 clients created inside the mock
    context rather than singletons from a previous test.
    """
    reset_services()
    yield
    reset_services()


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def tables(aws_credentials: None) -> Generator[Any, None, None]:
    """Create every engine table inside a moto mock."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        create_tables(client, TABLE_PREFIX)
        yield client


@pytest.fixture
def settings() -> EngineSettings:
    return get_settings()


@pytest.fixture
def db(tables: Any) -> DynamoDBService:
    return DynamoDBService(table_prefix=TABLE_PREFIX)


@pytest.fixture
def table_counts(db: DynamoDBService) -> Callable[[], dict[str, int]]:
    """Row counts of the booking tables, for rollback assertions."""
    names = ["bookings", "reservations", "resource-nights", "addon-lines", "promo-applications"]

    def counts() -> dict[str, int]:
        return {name: len(db.scan(name)) for name in names}

    return counts


# === Catalog ===


@pytest.fixture
def catalog_seed(db: DynamoDBService) -> None:
    """Seed rooms, beds, a camp session, add-ons and promo codes."""
    db.put_item(
        "rooms",
        {
            "room_id": ROOM_ID,
            "name": "Ocean Room",
            "base_rate": 18000,
            "currency": "EUR",
            "max_guests": 3,
            "base_occupancy": 2,
            "extra_guest_fee": 2500,
        },
    )
    db.put_item(
        "rooms",
        {"room_id": GARDEN_ROOM_ID, "name": "Garden Room", "base_rate": 12000, "currency": "EUR"},
    )
    for bed_id, name in ((BED_A, "Dorm A, bed 1"), (BED_B, "Dorm A, bed 2")):
        db.put_item("beds", {"bed_id": bed_id, "room_id": "ROOM-DORM-A", "name": name})
    db.put_item(
        "camp-sessions",
        {
            "camp_session_id": CAMP_ID,
            "name": "Surf Camp Week 27",
            "start_date": "2026-06-28",
            "end_date": "2026-07-05",
            "nightly_rate": 5000,
            "currency": "EUR",
            "capacity": 2,
        },
    )
    db.put_item(
        "addons",
        {"addon_id": SURF_LESSON, "name": "Surf lesson package", "price": 15000, "currency": "EUR"},
    )
    db.put_item(
        "addons",
        {
            "addon_id": BOARD_RENTAL,
            "name": "Board rental",
            "price": 5000,
            "currency": "EUR",
            "max_quantity": 2,
        },
    )
    db.put_item(
        "promo-codes",
        {
            "code": "SUMMER25",
            "discount_type": "percentage",
            "value": Decimal("10"),
            "used_count": 0,
            "is_active": True,
        },
    )
    db.put_item(
        "promo-codes",
        {
            "code": "LASTONE",
            "discount_type": "fixed",
            "value": Decimal("5000"),
            "max_uses": 1,
            "used_count": 0,
            "is_active": True,
        },
    )


# === Services ===


@pytest.fixture
def gateway(settings: EngineSettings) -> FakeGateway:
    return FakeGateway(settings=settings)


@pytest.fixture
def catalog(db: DynamoDBService, catalog_seed: None) -> CatalogService:
    return CatalogService(db)


@pytest.fixture
def bookings(db: DynamoDBService) -> BookingRepository:
    return BookingRepository(db)


@pytest.fixture
def payments(db: DynamoDBService) -> PaymentService:
    return PaymentService(db)


@pytest.fixture
def audit(db: DynamoDBService) -> AuditLogService:
    return AuditLogService(db)


@pytest.fixture
def pricing(catalog: CatalogService, settings: EngineSettings) -> PricingEngine:
    return PricingEngine(catalog, settings)


@pytest.fixture
def conflicts(
    bookings: BookingRepository, catalog: CatalogService, settings: EngineSettings
) -> ConflictChecker:
    return ConflictChecker(bookings, catalog, settings)


@pytest.fixture
def checkout(
    db: DynamoDBService,
    catalog: CatalogService,
    pricing: PricingEngine,
    conflicts: ConflictChecker,
    bookings: BookingRepository,
    payments: PaymentService,
    gateway: FakeGateway,
    audit: AuditLogService,
    settings: EngineSettings,
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        db=db,
        customers=CustomerService(db),
        catalog=catalog,
        pricing=pricing,
        conflicts=conflicts,
        bookings=bookings,
        payments=payments,
        gateway=gateway,
        audit=audit,
        settings=settings,
    )


@pytest.fixture
def webhooks(
    db: DynamoDBService,
    bookings: BookingRepository,
    payments: PaymentService,
    gateway: FakeGateway,
    audit: AuditLogService,
    settings: EngineSettings,
) -> WebhookProcessor:
    return WebhookProcessor(db, bookings, payments, gateway, audit, settings)


@pytest.fixture
def sweep(
    payments: PaymentService,
    gateway: FakeGateway,
    audit: AuditLogService,
    settings: EngineSettings,
) -> ReconciliationSweep:
    return ReconciliationSweep(payments, gateway, audit, settings)


@pytest.fixture
def refunds(
    bookings: BookingRepository,
    payments: PaymentService,
    gateway: FakeGateway,
    audit: AuditLogService,
) -> RefundService:
    return RefundService(bookings, payments, gateway, audit)


# === Request and event builders ===


@pytest.fixture
def make_checkout_request() -> Callable[..., CheckoutRequest]:
    """Build a CheckoutRequest; defaults to the ocean room for a week."""

    def build(
        selection: list | None = None,
        email: str = "guest@example.com",
        promo_code: str | None = None,
    ) -> CheckoutRequest:
        return CheckoutRequest(
            customer=CustomerCreate(email=email, first_name="Ana", last_name="Silva"),
            selection=selection
            or [RoomLine(room_id=ROOM_ID, check_in=CHECK_IN, check_out=CHECK_OUT, guests=2)],
            promo_code=promo_code,
            success_url="https://example.com/success?session_id={CHECKOUT_SESSION_ID}",
            cancel_url="https://example.com/cancel",
        )

    return build


@pytest.fixture
def room_line() -> RoomLine:
    return RoomLine(room_id=ROOM_ID, check_in=CHECK_IN, check_out=CHECK_OUT, guests=2)


@pytest.fixture
def camp_line() -> Callable[..., CampLine]:
    def build(*bed_ids: str) -> CampLine:
        return CampLine(camp_session_id=CAMP_ID, bed_ids=list(bed_ids or (BED_A,)))

    return build


@pytest.fixture
def addon_line() -> AddOnLine:
    return AddOnLine(addon_id=SURF_LESSON, quantity=1)


def stripe_event(
    event_type: str, obj: dict[str, Any], event_id: str | None = None
) -> dict[str, Any]:
    """A Stripe event envelope."""
    return {
        "id": event_id or f"evt_test_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Stripe-Signature header for a payload (scheme v1, HMAC-SHA256)."""
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    return stripe_event


@pytest.fixture
def signed() -> Callable[[dict[str, Any]], tuple[bytes, str]]:
    """Serialize an event and sign it with the test webhook secret."""

    def build(event: dict[str, Any]) -> tuple[bytes, str]:
        payload = json.dumps(event).encode("utf-8")
        return payload, sign_payload(payload)

    return build
