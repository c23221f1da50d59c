"""
Exception Classes - Strongly typed exception hierarchy.
"""


class IAPError(Exception):
    """Base exception for all in-app purchase errors."""

    pass


class ProductNotLoadedError(IAPError):
    """Raised when a purchase is attempted before the product was found."""

    def __init__(self, product_identifier: str) -> None:
        self.product_identifier = product_identifier
        super().__init__(f"Product not loaded: {product_identifier}")


class PurchaseInProgressError(IAPError):
    """Raised when a purchase or restore is started while another is outstanding."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"A {operation} is already in progress")


class ReceiptValidationError(IAPError):
    """Raised inside the validator when a receipt cannot be checked."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Receipt validation failed: {message}")
