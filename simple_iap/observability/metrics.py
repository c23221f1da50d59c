"""
Metrics Collection with Prometheus.

Counts purchase outcomes and receipt validations.
"""

from prometheus_client import Counter, Histogram

from simple_iap.models.domain import PurchaseStatus, ReceiptExists, ReceiptStatus


class IAPMetrics:
    """Centralized metrics for the purchase flow."""

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""
        self.purchase_outcomes_total = Counter(
            "iap_purchase_outcomes_total",
            "Purchase and restore outcomes reported to callers",
            ["operation", "status"],
        )

        self.receipt_validations_total = Counter(
            "iap_receipt_validations_total",
            "Receipt validations by result",
            ["result"],
        )

        self.receipt_validation_duration_seconds = Histogram(
            "iap_receipt_validation_duration_seconds",
            "Receipt validation round trip in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

    def record_purchase_outcome(self, operation: str, status: PurchaseStatus) -> None:
        """Record the status reported for a purchase or restore."""
        self.purchase_outcomes_total.labels(operation=operation, status=status.value).inc()

    def record_receipt_validation(self, status: ReceiptStatus, duration: float) -> None:
        """Record a receipt validation result and its duration."""
        result = "exists" if isinstance(status, ReceiptExists) else "error"
        self.receipt_validations_total.labels(result=result).inc()
        self.receipt_validation_duration_seconds.observe(duration)


# Global metrics instance
metrics = IAPMetrics()
