"""
Pytest Configuration and Centralized Fixtures.

Provides reusable doubles for the purchase flow:
- Payment queue and product catalog mocks
- In-memory receipt store
- Fake verifyReceipt endpoint behind httpx.MockTransport
- Receipt validator and purchase controller wired to the doubles
"""

import json
import os
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Set required environment variables BEFORE importing package modules
os.environ.setdefault("IAP_SHARED_SECRET", "test-shared-secret")
os.environ.setdefault("IAP_PRODUCT_IDENTIFIER", "com.example.app.monthly")

from simple_iap.models.domain import Product
from simple_iap.services.purchase_controller import PurchaseController
from simple_iap.services.receipt_validator import ReceiptValidator

PRODUCT_ID = "com.example.app.monthly"
SHARED_SECRET = "test-shared-secret"
VERIFY_URL = "https://verify.test/verifyReceipt"
RECEIPT_BYTES = b"\x30\x82receipt-bytes"

# Clock used by the controller in tests
NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


def receipt_body(*expires_dates: str) -> bytes:
    """Build a verifyReceipt response body with the given expires_date values."""
    return json.dumps(
        {
            "status": 0,
            "environment": "Production",
            "latest_receipt_info": [
                {
                    "product_id": PRODUCT_ID,
                    "transaction_id": f"1000000{i}",
                    "expires_date": expires_date,
                }
                for i, expires_date in enumerate(expires_dates)
            ],
        }
    ).encode()


ACTIVE_BODY = receipt_body("2025-05-01 12:00:00 Etc/GMT", "2099-01-01 00:00:00 Etc/GMT")
EXPIRED_BODY = receipt_body("2025-04-01 12:00:00 Etc/GMT", "2025-05-01 12:00:00 Etc/GMT")


# ============================================================================
# Verification Endpoint
# ============================================================================


class FakeVerifyEndpoint:
    """Stands in for the verifyReceipt endpoint; records every request."""

    def __init__(self) -> None:
        self.status_code = 200
        self.body: bytes = ACTIVE_BODY
        self.error: Exception | None = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, content=self.body)

    def last_payload(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def endpoint() -> FakeVerifyEndpoint:
    """Fake verification endpoint answering with an active subscription."""
    return FakeVerifyEndpoint()


@pytest.fixture
def http_client(endpoint: FakeVerifyEndpoint) -> httpx.AsyncClient:
    """HTTP client routed to the fake endpoint."""
    return httpx.AsyncClient(transport=httpx.MockTransport(endpoint.handler))


@pytest.fixture
def validator(http_client: httpx.AsyncClient) -> ReceiptValidator:
    """Receipt validator using the fake endpoint."""
    return ReceiptValidator(
        verify_url=VERIFY_URL,
        shared_secret=SHARED_SECRET,
        http_client=http_client,
    )


# ============================================================================
# Platform Doubles
# ============================================================================


class InMemoryReceiptStore:
    """Receipt store holding the receipt in memory."""

    def __init__(self, receipt: bytes | None = RECEIPT_BYTES) -> None:
        self.receipt = receipt
        self.refreshed_receipt: bytes | None = None
        self.refresh_calls = 0

    def load_receipt(self) -> bytes | None:
        return self.receipt

    async def refresh_receipt(self) -> None:
        self.refresh_calls += 1
        if self.refreshed_receipt is not None:
            self.receipt = self.refreshed_receipt


@pytest.fixture
def product() -> Product:
    """The subscription product."""
    return Product(identifier=PRODUCT_ID, handle=object())


@pytest.fixture
def payment_queue() -> MagicMock:
    """Payment queue that allows payments."""
    queue = MagicMock()
    queue.can_make_payments = MagicMock(return_value=True)
    return queue


@pytest.fixture
def catalog(product: Product) -> MagicMock:
    """Catalog returning the subscription product."""
    catalog = MagicMock()
    catalog.fetch_products = AsyncMock(return_value=[product])
    return catalog


@pytest.fixture
def receipt_store() -> InMemoryReceiptStore:
    """Receipt store with a receipt on the device."""
    return InMemoryReceiptStore()


@pytest.fixture
def controller(
    catalog: MagicMock,
    payment_queue: MagicMock,
    receipt_store: InMemoryReceiptStore,
    validator: ReceiptValidator,
) -> PurchaseController:
    """Purchase controller wired to doubles, with a fixed clock."""
    return PurchaseController(
        product_identifier=PRODUCT_ID,
        catalog=catalog,
        payment_queue=payment_queue,
        receipt_store=receipt_store,
        validator=validator,
        clock=lambda: NOW,
    )


@pytest.fixture
def loaded_controller(controller: PurchaseController, product: Product) -> PurchaseController:
    """Purchase controller whose product has already been found."""
    controller.product = product
    return controller
