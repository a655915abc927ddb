"""Exception hierarchy for the lending engine."""

from decimal import Decimal
from typing import Optional


class LendingError(Exception):
    """Base exception for all lending engine errors."""


class InvalidConfiguration(LendingError):
    """Raised when product fee/penalty configuration cannot be parsed."""


class LedgerMisconfigured(InvalidConfiguration):
    """Raised when a provider's chart of accounts lacks a required account."""


class NotFound(LendingError):
    """Raised when a referenced product, provider, application or loan is missing."""


class InvalidState(LendingError):
    """Raised when an entity is in the wrong state for the operation."""


class InsufficientFunds(LendingError):
    """Raised when a provider cannot fund the requested loan amount."""

    def __init__(self, available: Decimal, requested: Decimal, provider_id: Optional[str] = None):
        self.available = available
        self.requested = requested
        self.provider_id = provider_id
        super().__init__(
            f"Insufficient provider funds. Available: {available}, Requested: {requested}"
        )


class PaymentRejected(LendingError):
    """Raised when a repayment cannot be applied (e.g. it exceeds the amount owed)."""


class TransactionAborted(LendingError):
    """Raised when the storage transaction fails; safe to retry from scratch."""
