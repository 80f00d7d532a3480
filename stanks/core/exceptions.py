"""Domain exceptions with structured, API-ready error payloads."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any


class AppException(Exception):
    """Base application exception with structured error response."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.status_code = int(status_code or self.status_code)
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to RFC 7807 problem+json style response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "status": self.status_code,
            **({"details": self.details} if self.details else {}),
        }


class NotFoundError(AppException):
    """Resource not found."""

    status_code = HTTPStatus.NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Resource not found"


class BadRequestError(AppException):
    """Bad request."""

    status_code = HTTPStatus.BAD_REQUEST
    error_code = "BAD_REQUEST"
    message = "Bad request"


class AuthorizationError(AppException):
    """Authorization failed."""

    status_code = HTTPStatus.FORBIDDEN
    error_code = "FORBIDDEN"
    message = "You don't have permission to access this resource"


class ValidationError(AppException):
    """Validation failed."""

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY
    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class ConflictError(AppException):
    """Resource conflict."""

    status_code = HTTPStatus.CONFLICT
    error_code = "CONFLICT"
    message = "Resource conflict"


# =============================================================================
# ECONOMY ERRORS
# =============================================================================


class InvalidSymbolError(ValidationError):
    """Symbol is not exactly six uppercase letters."""

    error_code = "INVALID_SYMBOL"
    message = "Symbol must be exactly 6 uppercase letters"


class StockNotFoundError(NotFoundError):
    error_code = "STOCK_NOT_FOUND"
    message = "Stock not found"


class StockNotListedError(BadRequestError):
    error_code = "STOCK_NOT_LISTED"
    message = "Stock is not listed for public trading"


class DuplicateIdempotencyError(ConflictError):
    """The idempotency key was already used by this player."""

    error_code = "DUPLICATE_IDEMPOTENCY_KEY"
    message = "Idempotency key already used"


class InsufficientFundsError(BadRequestError):
    """Wallet cannot cover the cost without passing the debt ceiling.

    For orders ``details`` carries the largest affordable alternative
    (``max_quantity_units``, ``max_notional_micros``, ``max_fee_micros``).
    """

    error_code = "INSUFFICIENT_FUNDS"
    message = "Insufficient funds"


class InsufficientSharesError(BadRequestError):
    error_code = "INSUFFICIENT_SHARES"
    message = "Insufficient shares"


class BusinessLockedError(AuthorizationError):
    """Net worth is below the business unlock threshold."""

    error_code = "BUSINESS_LOCKED"
    message = "Net worth is below the business unlock threshold"


class UnauthorizedError(AuthorizationError):
    """Acting user does not own the resource."""

    error_code = "UNAUTHORIZED"
    message = "You do not own this resource"


class TransactionConflictError(ConflictError):
    """Serialization retries were exhausted."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    error_code = "TRANSACTION_CONFLICT"
    message = "Too much contention, please retry"


class MonetaryOverflowError(AppException):
    """A monetary computation left the 64-bit range."""

    error_code = "MONETARY_OVERFLOW"
    message = "Monetary value out of range"
