"""
Purchase Flow Controller - Product lookup, payment submission and entitlement.

Drives a single auto-renewable subscription:
- looks the product up once and keeps it in memory
- submits payments / restores and waits for the payment queue to report back
- validates the device receipt after a completed transaction and maps the
  result to a PurchaseStatus

Nothing is persisted; entitlement is re-derived from a fresh receipt check.
"""

import asyncio
from collections.abc import Callable, Coroutine, Sequence
from datetime import UTC, datetime
from typing import Any

from structlog import get_logger

from simple_iap.config import Settings
from simple_iap.exceptions import ProductNotLoadedError
from simple_iap.models.domain import (
    Product,
    PurchaseStatus,
    ReceiptError,
    ReceiptExists,
    ReceiptStatus,
    Transaction,
    TransactionState,
)
from simple_iap.observability.logging import log_context
from simple_iap.observability.metrics import metrics
from simple_iap.services.pending import PendingPurchase
from simple_iap.services.platform import (
    FileReceiptStore,
    PaymentQueue,
    ProductCatalog,
    ReceiptStore,
)
from simple_iap.services.receipt_validator import ReceiptValidator

logger = get_logger(__name__)

NO_RECEIPT_MESSAGE = "no receipt found"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class PurchaseController:
    """
    Purchase flow for one subscription product.

    Registered as the payment queue's observer; the queue calls
    update_transactions() and restore_finished() as the platform reports
    progress.
    """

    def __init__(
        self,
        product_identifier: str,
        catalog: ProductCatalog,
        payment_queue: PaymentQueue,
        receipt_store: ReceiptStore,
        validator: ReceiptValidator,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize purchase controller.

        Args:
            product_identifier: Subscription product id from App Store Connect
            catalog: Product lookup
            payment_queue: Platform payment queue
            receipt_store: On-device receipt access
            validator: Receipt validator for the verification endpoint
            clock: Returns the current aware datetime
        """
        if not product_identifier:
            raise ValueError("Product identifier is required")

        self.product_identifier = product_identifier
        self.catalog = catalog
        self.payment_queue = payment_queue
        self.receipt_store = receipt_store
        self.validator = validator
        self.clock = clock

        self.product: Product | None = None
        self._product_lookup: asyncio.Future[Product | None] | None = None
        self._pending = PendingPurchase()
        self._restore_delivered = False
        self._last_receipt_status: ReceiptStatus | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        catalog: ProductCatalog,
        payment_queue: PaymentQueue,
        receipt_store: ReceiptStore | None = None,
        validator: ReceiptValidator | None = None,
    ) -> "PurchaseController":
        """Build a controller from application settings."""
        return cls(
            product_identifier=settings.iap_product_identifier,
            catalog=catalog,
            payment_queue=payment_queue,
            receipt_store=receipt_store or FileReceiptStore(settings.receipt_path),
            validator=validator or ReceiptValidator.from_settings(settings),
        )

    @property
    def is_busy(self) -> bool:
        """Check if a purchase or restore is outstanding."""
        return self._pending.is_pending

    async def start(self) -> Product | None:
        """Observe the payment queue and load the product (call at app launch)."""
        self.payment_queue.add_observer(self)

        product = await self.find_product()
        if product is not None:
            logger.info("iap_product_loaded", product_identifier=product.identifier)
        else:
            logger.warning("iap_product_not_found", product_identifier=self.product_identifier)
        return product

    # ------------------------------------------------------------------
    # Product lookup
    # ------------------------------------------------------------------

    async def find_product(self) -> Product | None:
        """
        Look up the configured product in the store catalog.

        Concurrent callers share one lookup.

        Returns:
            The product, or None if the lookup failed or found nothing
        """
        if self._product_lookup is None:
            self._product_lookup = asyncio.ensure_future(self._lookup_product())

        lookup = self._product_lookup
        try:
            return await asyncio.shield(lookup)
        finally:
            if self._product_lookup is lookup and lookup.done():
                self._product_lookup = None

    async def _lookup_product(self) -> Product | None:
        try:
            products = await self.catalog.fetch_products({self.product_identifier})
        except Exception as exc:
            logger.error(
                "product_request_failed",
                product_identifier=self.product_identifier,
                error=str(exc),
            )
            return None

        found = next((p for p in products if p.identifier == self.product_identifier), None)
        if found is None:
            logger.warning("product_request_empty", product_identifier=self.product_identifier)
            return None

        self.product = found
        return found

    # ------------------------------------------------------------------
    # Purchase / restore
    # ------------------------------------------------------------------

    async def purchase(self) -> PurchaseStatus:
        """
        Buy the subscription.

        Returns:
            CANNOT_PAY immediately if the device forbids purchases, otherwise the
            status reported once the payment queue and receipt check conclude

        Raises:
            ProductNotLoadedError: If find_product() has not found the product
            PurchaseInProgressError: If a purchase or restore is outstanding
        """
        with log_context(operation="purchase"):
            product = self.product
            if product is None:
                logger.warning("purchase_without_product")
                raise ProductNotLoadedError(self.product_identifier)

            if not self.payment_queue.can_make_payments():
                logger.info("payments_not_allowed")
                metrics.record_purchase_outcome("purchase", PurchaseStatus.CANNOT_PAY)
                return PurchaseStatus.CANNOT_PAY

            future = self._pending.claim("purchase")
            try:
                self.payment_queue.add_payment(product)
            except Exception:
                self._pending.release(future)
                raise

            logger.info("payment_submitted", product_identifier=product.identifier)
            return await self._await_outcome("purchase", future)

    async def restore_purchase(self) -> PurchaseStatus:
        """
        Restore a previously bought subscription.

        Raises:
            PurchaseInProgressError: If a purchase or restore is outstanding
        """
        with log_context(operation="restore"):
            future = self._pending.claim("restore")
            self._restore_delivered = False
            try:
                self.payment_queue.restore_completed_transactions()
            except Exception:
                self._pending.release(future)
                raise

            logger.info("restore_requested")
            return await self._await_outcome("restore", future)

    async def _await_outcome(
        self, operation: str, future: "asyncio.Future[PurchaseStatus]"
    ) -> PurchaseStatus:
        try:
            status = await future
        finally:
            self._pending.release(future)

        metrics.record_purchase_outcome(operation, status)
        return status

    # ------------------------------------------------------------------
    # Payment queue observer
    # ------------------------------------------------------------------

    def update_transactions(self, transactions: Sequence[Transaction]) -> None:
        """Handle transaction-state updates from the payment queue."""
        logger.info("transactions_received", count=len(transactions))

        # Only the first transaction for our product is considered
        transaction = next(
            (t for t in transactions if t.product_identifier == self.product_identifier),
            None,
        )
        if transaction is None:
            logger.info("no_matching_transaction", product_identifier=self.product_identifier)
            return

        if transaction.state.is_complete():
            self.payment_queue.finish_transaction(transaction)
            if self._pending.operation == "restore":
                self._restore_delivered = True
            logger.info(
                "transaction_completed",
                state=transaction.state.value,
                transaction_id=transaction.transaction_id,
            )
            self._schedule(self.process_receipt())
        elif transaction.state == TransactionState.FAILED:
            logger.warning(
                "payment_failed",
                transaction_id=transaction.transaction_id,
                error=transaction.error,
            )
            self._pending.resolve(PurchaseStatus.PURCHASE_FAILED)
        else:
            logger.info("transaction_in_progress", state=transaction.state.value)

    def restore_finished(self, error: str | None = None) -> None:
        """
        Handle the end of a restore request.

        A failed restore reports PURCHASE_FAILED. A restore that delivered no
        transaction for our product reports PURCHASE_EXPIRED.
        """
        if self._pending.operation != "restore":
            return

        if error is not None:
            logger.warning("restore_failed", error=error)
            self._pending.resolve(PurchaseStatus.PURCHASE_FAILED)
        elif not self._restore_delivered:
            logger.info("restore_found_nothing", product_identifier=self.product_identifier)
            self._pending.resolve(PurchaseStatus.PURCHASE_EXPIRED)

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for receipt checks started by the payment queue to finish."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    # ------------------------------------------------------------------
    # Receipt validation and status resolution
    # ------------------------------------------------------------------

    async def process_receipt(self) -> ReceiptStatus:
        """
        Validate the device receipt and report the outcome to the pending caller.

        An unexpected failure during validation still resolves the pending
        caller, with PURCHASE_EXPIRED.

        Returns:
            The receipt status the outcome was derived from
        """
        try:
            status = await self._validate_device_receipt()
        except Exception as exc:
            logger.exception("receipt_processing_failed")
            status = ReceiptError(message=str(exc))
        self._last_receipt_status = status

        outcome = self._status_for(status)
        if not self._pending.resolve(outcome):
            logger.info("receipt_processed_without_pending_purchase", status=outcome.value)
        return status

    async def check_entitlement(self) -> PurchaseStatus:
        """
        Re-validate the device receipt outside a purchase flow.

        The outstanding purchase or restore, if any, is left untouched.
        """
        status = await self._validate_device_receipt()
        self._last_receipt_status = status
        return self._status_for(status)

    def is_purchase_active(self) -> bool:
        """
        Check the result of the last receipt validation in this process.

        True only if that validation found a receipt that has not expired yet.
        """
        status = self._last_receipt_status
        return isinstance(status, ReceiptExists) and status.is_active(self.clock())

    async def _validate_device_receipt(self) -> ReceiptStatus:
        try:
            receipt = self.receipt_store.load_receipt()
            if receipt is None:
                # Not on the device yet; ask the platform and look once more
                logger.info("receipt_missing_requesting_refresh")
                await self.receipt_store.refresh_receipt()
                receipt = self.receipt_store.load_receipt()
        except Exception as exc:
            logger.exception("receipt_load_failed")
            return ReceiptError(message=str(exc))

        if receipt is None:
            logger.warning("receipt_not_found_after_refresh")
            return ReceiptError(message=NO_RECEIPT_MESSAGE)

        return await self.validator.validate(receipt)

    def _status_for(self, status: ReceiptStatus) -> PurchaseStatus:
        if isinstance(status, ReceiptError):
            logger.warning("receipt_status_error", message=status.message)
            return PurchaseStatus.PURCHASE_EXPIRED

        if status.is_active(self.clock()):
            return PurchaseStatus.PAID

        logger.info("subscription_expired", expires_date=status.expiration_date.isoformat())
        return PurchaseStatus.PURCHASE_EXPIRED

    async def close(self) -> None:
        """Finish outstanding receipt checks and close the validator."""
        await self.wait_idle()
        await self.validator.close()
