"""Core infrastructure: settings, logging, exceptions, monetary model."""

from .config import settings
from .exceptions import (
    AppException,
    AuthorizationError,
    BadRequestError,
    BusinessLockedError,
    ConflictError,
    DuplicateIdempotencyError,
    InsufficientFundsError,
    InsufficientSharesError,
    InvalidSymbolError,
    MonetaryOverflowError,
    NotFoundError,
    StockNotFoundError,
    StockNotListedError,
    TransactionConflictError,
    UnauthorizedError,
    ValidationError,
)
