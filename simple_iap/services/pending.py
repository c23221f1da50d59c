"""
Pending Purchase Slot - Single outstanding purchase or restore.

Only one purchase/restore/validation cycle may be in flight. A second attempt
is rejected instead of replacing the first caller's completion.
"""

import asyncio

from structlog import get_logger

from simple_iap.exceptions import PurchaseInProgressError
from simple_iap.models.domain import PurchaseStatus

logger = get_logger(__name__)


class PendingPurchase:
    """Holds at most one future awaiting a PurchaseStatus."""

    def __init__(self) -> None:
        self._future: asyncio.Future[PurchaseStatus] | None = None
        self._operation: str | None = None

    @property
    def is_pending(self) -> bool:
        """Check if a purchase or restore is outstanding."""
        return self._future is not None

    @property
    def operation(self) -> str | None:
        """Kind of the outstanding operation ("purchase" or "restore")."""
        return self._operation

    def claim(self, operation: str) -> "asyncio.Future[PurchaseStatus]":
        """
        Occupy the slot for a new operation.

        Args:
            operation: "purchase" or "restore"

        Returns:
            Future resolved when the operation concludes

        Raises:
            PurchaseInProgressError: If another operation is outstanding
        """
        if self._future is not None:
            raise PurchaseInProgressError(self._operation or "purchase")

        self._future = asyncio.get_running_loop().create_future()
        self._operation = operation
        return self._future

    def resolve(self, status: PurchaseStatus) -> bool:
        """
        Complete the outstanding operation with status and free the slot.

        Returns:
            True if a caller was waiting, False if the slot was empty
        """
        future, operation = self._future, self._operation
        self._future = None
        self._operation = None

        if future is None:
            return False

        if not future.done():
            future.set_result(status)
        logger.info("pending_purchase_resolved", operation=operation, status=status.value)
        return True

    def release(self, future: "asyncio.Future[PurchaseStatus]") -> None:
        """Free the slot if it still holds future (caller gave up waiting)."""
        if self._future is future:
            self._future = None
            self._operation = None
