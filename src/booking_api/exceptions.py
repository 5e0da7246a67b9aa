"""FastAPI exception handlers for converting BookingError to HTTP responses.

Every error body has the ErrorResponse shape (success, error_code, message,
recovery, retryable, details). The ErrorCode-to-HTTP status mapping:
- 400 Bad Request: validation failures and bad webhook signatures
- 401 Unauthorized: no caller identity
- 403 Forbidden: caller lacks the role for the action
- 404 Not Found: referenced resource does not exist
- 409 Conflict: inventory already taken
- 500 Internal Server Error: datastore or unexpected failures
- 502 Bad Gateway: Stripe failures

Usage:
    from booking_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from booking_api.models.common import ValidationErrorDetail
from booking_engine.models.errors import BookingError, ErrorCode, ErrorResponse

logger = logging.getLogger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: HTTP_400_BAD_REQUEST,
    ErrorCode.SIGNATURE_ERROR: HTTP_400_BAD_REQUEST,
    ErrorCode.UNAUTHORIZED: HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: HTTP_403_FORBIDDEN,
    ErrorCode.NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.CONFLICT: HTTP_409_CONFLICT,
    ErrorCode.GATEWAY_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.SERVER_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode.

    Args:
        code: The ErrorCode to map

    Returns:
        HTTP status code, defaults to 500 if not explicitly mapped.
    """
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_500_INTERNAL_SERVER_ERROR)


def error_json(code: ErrorCode, details: dict | None = None) -> JSONResponse:
    """Render an error code as a JSON response with the mapped status."""
    body = ErrorResponse.from_code(code, details)
    return JSONResponse(
        status_code=get_http_status_for_error(code),
        content=body.model_dump(mode="json"),
    )


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Handle BookingError exceptions and convert to JSON response.

    Args:
        request: The incoming request
        exc: The BookingError exception

    Returns:
        JSONResponse with error details and appropriate status code.
    """
    if exc.code == ErrorCode.SERVER_ERROR:
        # Details of server errors stay in the logs
        logger.error("Server error on %s: %s", request.url.path, exc.details)
        return error_json(exc.code)
    return error_json(exc.code, exc.details)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures as VALIDATION_ERROR with field locations."""
    fields = [
        ValidationErrorDetail(
            loc=[str(part) for part in error.get("loc", [])],
            msg=str(error.get("msg", "")),
            type=str(error.get("type", "")),
        ).model_dump()
        for error in exc.errors()
    ]
    return error_json(ErrorCode.VALIDATION_ERROR, {"fields": fields})


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with a generic error response.

    The client gets a bare SERVER_ERROR body; the traceback is logged.
    """
    logger.exception("Unhandled exception on %s: %s", request.url.path, exc)
    return error_json(ErrorCode.SERVER_ERROR)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(BookingError, booking_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, validation_error_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, generic_exception_handler)
