"""Correlation IDs for tracing a request through checkout, webhooks and admin runs.

The id comes from the caller's X-Correlation-ID header when it is usable,
otherwise from the API Gateway request id Mangum puts in the scope, so engine
log lines can be matched to gateway access logs. Local requests get a new id.
"""

import re
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from booking_engine.utils.logging import clear_correlation_id, set_correlation_id

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Ids end up verbatim in log lines and audit entries
_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _gateway_request_id(request: Request) -> str | None:
    event: dict[str, Any] = request.scope.get("aws.event") or {}
    request_id = event.get("requestContext", {}).get("requestId")
    return request_id or None


def resolve_correlation_id(request: Request) -> str | None:
    """Pick the correlation id for a request, or None to generate one."""
    incoming = request.headers.get(CORRELATION_ID_HEADER)
    if incoming and _VALID_CORRELATION_ID.match(incoming):
        return incoming
    return _gateway_request_id(request)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id to the request context and echoes it back."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = set_correlation_id(resolve_correlation_id(request))
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()
