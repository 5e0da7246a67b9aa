"""FastAPI application for the booking engine REST API.

This package provides REST endpoints for:
- Health checks
- Quotes, availability and checkout (public)
- Stripe webhooks (signature-verified)
- Conflict checks, reconciliation, refunds and webhook replay (operators)
"""

import logging
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from booking_api.exceptions import register_exception_handlers
from booking_api.middleware.correlation import CorrelationIdMiddleware
from booking_api.models.common import PingResponse
from booking_api.routes.admin import router as admin_router
from booking_api.routes.availability import router as availability_router
from booking_api.routes.checkout import router as checkout_router
from booking_api.routes.quotes import router as quotes_router
from booking_api.routes.webhooks import router as webhooks_router
from booking_engine import __version__
from booking_engine.config import get_settings
from booking_engine.utils.logging import configure_logging

configure_logging(logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Booking Engine API",
    description="Quotes, checkout, Stripe webhooks and payment reconciliation",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

# Include routers under /api prefix
# This matches CloudFront routing: /api/* → API Gateway
app.include_router(quotes_router, prefix="/api")
app.include_router(availability_router, prefix="/api")
app.include_router(checkout_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/ping", response_model=PingResponse)
async def ping() -> PingResponse:
    """Root health check endpoint at /api/ping."""
    return PingResponse(timestamp=datetime.now(UTC).isoformat())


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run("booking_api.main:app", host=host, port=port, reload=True, reload_dirs=["src"])
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
