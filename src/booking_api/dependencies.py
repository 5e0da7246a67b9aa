"""FastAPI dependency injection providers for engine services.

Factory functions use @lru_cache so each service is built once per process
(per Lambda container). Services are lazily instantiated.

Usage in routes:
    from booking_api.dependencies import get_pricing_engine

    @router.post("/quotes")
    async def create_quote(
        body: QuoteRequest,
        pricing: PricingEngine = Depends(get_pricing_engine),
    ):
        ...

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── CatalogService ── PricingEngine
        ├── BookingRepository ── ConflictChecker
        ├── PaymentService
        ├── CustomerService
        └── AuditLogService
    StripeGateway (singleton via get_payment_gateway)

    CheckoutOrchestrator, WebhookProcessor, ReconciliationSweep and
    RefundService are composed from the above.

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from booking_engine.config import get_settings
from booking_engine.services.audit import AuditLogService
from booking_engine.services.bookings import BookingRepository
from booking_engine.services.catalog import CatalogService
from booking_engine.services.checkout import CheckoutOrchestrator
from booking_engine.services.conflicts import ConflictChecker
from booking_engine.services.customers import CustomerService
from booking_engine.services.dynamodb import get_dynamodb_service
from booking_engine.services.gateway import StripeGateway, get_payment_gateway
from booking_engine.services.payment_service import PaymentService
from booking_engine.services.pricing import PricingEngine
from booking_engine.services.reconciliation import ReconciliationSweep
from booking_engine.services.refunds import RefundService
from booking_engine.services.webhook_handler import WebhookProcessor


@lru_cache
def get_catalog_service() -> CatalogService:
    return CatalogService(db=get_dynamodb_service())


@lru_cache
def get_booking_repository() -> BookingRepository:
    return BookingRepository(db=get_dynamodb_service())


@lru_cache
def get_payment_service() -> PaymentService:
    return PaymentService(db=get_dynamodb_service())


@lru_cache
def get_customer_service() -> CustomerService:
    return CustomerService(db=get_dynamodb_service())


@lru_cache
def get_audit_log() -> AuditLogService:
    return AuditLogService(db=get_dynamodb_service())


def get_gateway() -> StripeGateway:
    """Get the shared Stripe gateway.

    A separate provider so tests can swap the gateway through
    ``app.dependency_overrides`` or by patching this function.
    """
    return get_payment_gateway()


@lru_cache
def get_pricing_engine() -> PricingEngine:
    """Get cached PricingEngine instance.

    Returns:
        PricingEngine configured with the catalog and current settings.
    """
    return PricingEngine(catalog=get_catalog_service(), settings=get_settings())


@lru_cache
def get_conflict_checker() -> ConflictChecker:
    """Get cached ConflictChecker instance.

    Returns:
        ConflictChecker configured with the booking repository and catalog.
    """
    return ConflictChecker(
        bookings=get_booking_repository(),
        catalog=get_catalog_service(),
        settings=get_settings(),
    )


@lru_cache
def get_checkout_orchestrator() -> CheckoutOrchestrator:
    """Get cached CheckoutOrchestrator instance.

    Returns:
        CheckoutOrchestrator configured with all required dependencies.
    """
    return CheckoutOrchestrator(
        db=get_dynamodb_service(),
        customers=get_customer_service(),
        catalog=get_catalog_service(),
        pricing=get_pricing_engine(),
        conflicts=get_conflict_checker(),
        bookings=get_booking_repository(),
        payments=get_payment_service(),
        gateway=get_gateway(),
        audit=get_audit_log(),
        settings=get_settings(),
    )


@lru_cache
def get_webhook_processor() -> WebhookProcessor:
    """Get cached WebhookProcessor instance."""
    return WebhookProcessor(
        db=get_dynamodb_service(),
        bookings=get_booking_repository(),
        payments=get_payment_service(),
        gateway=get_gateway(),
        audit=get_audit_log(),
        settings=get_settings(),
    )


@lru_cache
def get_reconciliation_sweep() -> ReconciliationSweep:
    """Get cached ReconciliationSweep instance."""
    return ReconciliationSweep(
        payments=get_payment_service(),
        gateway=get_gateway(),
        audit=get_audit_log(),
        settings=get_settings(),
    )


@lru_cache
def get_refund_service() -> RefundService:
    """Get cached RefundService instance."""
    return RefundService(
        bookings=get_booking_repository(),
        payments=get_payment_service(),
        gateway=get_gateway(),
        audit=get_audit_log(),
    )


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the DynamoDB, gateway, SSM and settings singletons.

    Example:
        @pytest.fixture(autouse=True)
        def reset_state():
            yield
            reset_services()
    """
    from booking_engine.config import reset_settings
    from booking_engine.services.dynamodb import reset_dynamodb_service
    from booking_engine.services.ssm_service import get_ssm_service

    for provider in (
        get_catalog_service,
        get_booking_repository,
        get_payment_service,
        get_customer_service,
        get_audit_log,
        get_pricing_engine,
        get_conflict_checker,
        get_checkout_orchestrator,
        get_webhook_processor,
        get_reconciliation_sweep,
        get_refund_service,
    ):
        provider.cache_clear()

    get_payment_gateway.cache_clear()
    get_ssm_service.cache_clear()
    reset_dynamodb_service()
    reset_settings()
