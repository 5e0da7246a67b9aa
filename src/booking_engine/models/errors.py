"""Standard error codes for the booking engine.

Every service raises BookingError with one of these codes at its public
boundary; the API layer maps the code to an HTTP status.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Error taxonomy shared by services and the HTTP API."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    SIGNATURE_ERROR = "SIGNATURE_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_ERROR: "The request is invalid",
    ErrorCode.CONFLICT: "The requested resource is not available for these dates",
    ErrorCode.NOT_FOUND: "A referenced resource does not exist",
    ErrorCode.GATEWAY_ERROR: "The payment provider could not complete the request",
    ErrorCode.SIGNATURE_ERROR: "Invalid webhook signature",
    ErrorCode.SERVER_ERROR: "An internal error occurred",
    ErrorCode.UNAUTHORIZED: "Authentication required to perform this action",
    ErrorCode.FORBIDDEN: "You are not allowed to perform this action",
}

ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_ERROR: "Correct the request using the details provided and try again",
    ErrorCode.CONFLICT: "Choose different dates or resources",
    ErrorCode.NOT_FOUND: "Verify the referenced ids",
    ErrorCode.GATEWAY_ERROR: "Try again in a few moments",
    ErrorCode.SIGNATURE_ERROR: "Verify webhook secret configuration",
    ErrorCode.SERVER_ERROR: "Try again later with backoff",
    ErrorCode.UNAUTHORIZED: "Sign in and retry",
    ErrorCode.FORBIDDEN: "Ask an administrator for the required role",
}

RETRYABLE_ERROR_CODES = frozenset({ErrorCode.GATEWAY_ERROR, ErrorCode.SERVER_ERROR})


class ErrorResponse(BaseModel):
    """Standard error body returned by the API."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    retryable: bool = False
    details: Optional[dict[str, Any]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            retryable=code in RETRYABLE_ERROR_CODES,
            details=details,
        )


class BookingError(Exception):
    """Exception raised by booking engine operations."""

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_ERROR_CODES

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to the API error body."""
        return ErrorResponse.from_code(self.code, self.details)


# Stripe error code to user-friendly message mapping
STRIPE_ERROR_MESSAGES: dict[str, str] = {
    "card_declined": "Your card was declined. Please try a different card.",
    "expired_card": "Your card has expired. Please use a different card.",
    "insufficient_funds": "Your card has insufficient funds. Please try a different card.",
    "incorrect_cvc": "The security code (CVC) is incorrect. Please check and try again.",
    "processing_error": "A processing error occurred. Please try again.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    "generic_decline": "Your card was declined. Please try a different card.",
}

# Stripe error codes that indicate the caller should retry
STRIPE_RETRYABLE_ERRORS: set[str] = {
    "processing_error",
    "rate_limit",
    "lock_timeout",
    "api_connection_error",
}


def get_user_friendly_stripe_message(
    stripe_error_code: Optional[str],
    default_message: str = "Payment could not be processed. Please try again.",
) -> str:
    """Get a user-friendly message for a Stripe error code.

    Args:
        stripe_error_code: The Stripe error code (e.g., 'card_declined').
        default_message: Message to use if error code is unknown.

    Returns:
        User-friendly error message.
    """
    if stripe_error_code and stripe_error_code in STRIPE_ERROR_MESSAGES:
        return STRIPE_ERROR_MESSAGES[stripe_error_code]
    return default_message


def is_stripe_error_retryable(stripe_error_code: Optional[str]) -> bool:
    """Check if a Stripe error is likely transient and retryable."""
    return stripe_error_code in STRIPE_RETRYABLE_ERRORS if stripe_error_code else False
