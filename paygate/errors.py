"""
Payment domain errors.

The lifecycle service raises these; the HTTP layer maps them to status codes
in a single exception handler (see paygate.main).
"""
from typing import Optional, Dict, Any


class PaymentError(Exception):
    """Base exception for all payment lifecycle errors."""

    error_code = "payment:error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "success": False,
            "error": self.error_code,
            "details": {"message": self.message, **self.details},
        }


class UnauthenticatedError(PaymentError):
    """No caller identity was supplied."""

    error_code = "auth:unauthenticated"

    def __init__(self, message: str = "Authentication required", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class ForbiddenError(PaymentError):
    """Caller is authenticated but does not own the resource."""

    error_code = "auth:forbidden"


class NotFoundError(PaymentError):
    error_code = "payment:not_found"


class ValidationError(PaymentError):
    """
    Payment request content is invalid.

    Examples:
    - Empty item list
    - Non-positive price or quantity
    """

    error_code = "payment:invalid_request"


class MalformedPayloadError(PaymentError):
    """
    Notification payload is missing fields or has the wrong shape.

    Also raised when the notified gross amount disagrees with the stored
    transaction amount.
    """

    error_code = "notification:malformed"


class InvalidSignatureError(PaymentError):
    """Notification authenticity check failed."""

    error_code = "notification:invalid_signature"


class GatewayError(PaymentError):
    """The external payment gateway rejected the call or was unreachable."""

    error_code = "gateway:error"


class GatewayTimeoutError(GatewayError):
    error_code = "gateway:timeout"


class TransactionNotCancellableError(PaymentError):
    """The transaction already reached a terminal status."""

    error_code = "payment:not_cancellable"


class InternalError(PaymentError):
    """Store failure or unexpected data shape."""

    error_code = "internal_error"


class UserNotFoundError(InternalError):
    """
    Authenticated caller has no user record.

    An authenticated caller should always resolve, so this signals an
    inconsistency between the token issuer and the user directory.
    """

    error_code = "internal:user_not_found"


class DuplicateOrderError(InternalError):
    """A second insert reused an order id."""

    error_code = "internal:duplicate_order"
