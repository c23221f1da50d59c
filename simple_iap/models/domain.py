"""
Domain Models - Immutable dataclasses and enums for the purchase flow.

NO DICTIONARIES - Platform events and validation results are strongly typed.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class PurchaseStatus(str, Enum):
    """Outcome reported to the caller after a purchase or restore attempt."""

    PAID = "paid"
    CANNOT_PAY = "cannot_pay"  # Device setting (parental controls, region)
    PURCHASE_FAILED = "purchase_failed"
    PURCHASE_EXPIRED = "purchase_expired"


class TransactionState(str, Enum):
    """Lifecycle state of a platform transaction."""

    PURCHASING = "purchasing"
    PURCHASED = "purchased"
    FAILED = "failed"
    RESTORED = "restored"
    DEFERRED = "deferred"

    def is_complete(self) -> bool:
        """Check if the platform considers the payment settled."""
        return self in (TransactionState.PURCHASED, TransactionState.RESTORED)


@dataclass(frozen=True)
class Product:
    """Subscription product as returned by the platform catalog."""

    identifier: str
    handle: object = None  # Platform product object, passed back on payment

    def __post_init__(self) -> None:
        """Validate product fields."""
        if not self.identifier:
            raise ValueError("Product identifier required")


@dataclass(frozen=True)
class Transaction:
    """Transaction-state event delivered by the payment queue."""

    product_identifier: str
    state: TransactionState
    transaction_id: str | None = None
    error: str | None = None  # Platform error description for failed payments
    handle: object = None  # Platform transaction object, passed back on finish


@dataclass(frozen=True)
class ReceiptExists:
    """Validation found a receipt expiring at expiration_date."""

    expiration_date: datetime

    def __post_init__(self) -> None:
        """Expiration must be comparable to an aware clock."""
        if self.expiration_date.tzinfo is None:
            raise ValueError("expiration_date must be timezone-aware")

    def is_active(self, now: datetime) -> bool:
        """Check if the subscription is still valid at now."""
        return now < self.expiration_date


@dataclass(frozen=True)
class ReceiptError:
    """Validation could not produce an expiration date."""

    message: str


ReceiptStatus = ReceiptExists | ReceiptError
