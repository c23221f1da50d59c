"""
Platform Purchasing Protocols - Interfaces to the device purchase subsystem.

The controller never touches a global queue or bundle; each collaborator is
passed in explicitly so tests can substitute doubles.
"""

from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Protocol

from structlog import get_logger

from simple_iap.models.domain import Product, Transaction

logger = get_logger(__name__)


class TransactionObserver(Protocol):
    """Receives transaction-state updates from the payment queue."""

    def update_transactions(self, transactions: Sequence[Transaction]) -> None:
        """Handle a batch of transaction-state changes."""
        ...


class ProductCatalog(Protocol):
    """Product lookup against the store catalog."""

    async def fetch_products(self, identifiers: set[str]) -> list[Product]:
        """
        Look up products by identifier.

        Returns:
            Products found (possibly empty)

        Raises:
            Exception: Any platform error; the controller treats it as not found
        """
        ...


class PaymentQueue(Protocol):
    """Platform payment queue."""

    def can_make_payments(self) -> bool:
        """Check if the device is allowed to make purchases."""
        ...

    def add_observer(self, observer: TransactionObserver) -> None:
        """Register an observer for transaction updates."""
        ...

    def add_payment(self, product: Product) -> None:
        """Submit a payment request for product."""
        ...

    def finish_transaction(self, transaction: Transaction) -> None:
        """Acknowledge a settled transaction so the queue drops it."""
        ...

    def restore_completed_transactions(self) -> None:
        """Ask the platform to replay previously completed transactions."""
        ...


class ReceiptStore(Protocol):
    """Access to the on-device receipt blob."""

    def load_receipt(self) -> bytes | None:
        """Read the receipt, or None if none is stored on the device."""
        ...

    async def refresh_receipt(self) -> None:
        """Ask the platform to fetch a fresh receipt onto the device."""
        ...


class FileReceiptStore:
    """Receipt store backed by a file at a known local path."""

    def __init__(
        self,
        path: str | Path,
        refresher: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """
        Initialize file receipt store.

        Args:
            path: Location of the receipt file
            refresher: Coroutine function that asks the platform to write a
                fresh receipt to path
        """
        self.path = Path(path)
        self._refresher = refresher

    def load_receipt(self) -> bytes | None:
        """Read the receipt file, or None if it does not exist."""
        if not self.path.is_file():
            return None
        return self.path.read_bytes()

    async def refresh_receipt(self) -> None:
        """Run the injected refresher, if any."""
        if self._refresher is None:
            logger.warning("receipt_refresh_unavailable", path=str(self.path))
            return

        logger.info("receipt_refresh_requested", path=str(self.path))
        await self._refresher()
