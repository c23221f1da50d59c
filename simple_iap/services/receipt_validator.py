"""
Receipt Validator - Checks a device receipt against the verifyReceipt endpoint.

NO DICTIONARIES - Request and response go through typed Pydantic models.

Every failure collapses into ReceiptError(message); nothing is retried.
"""

import time
from datetime import datetime

import httpx
from pydantic import ValidationError
from structlog import get_logger

from simple_iap.config import ReceiptSettings
from simple_iap.exceptions import ReceiptValidationError
from simple_iap.models.domain import ReceiptError, ReceiptExists, ReceiptStatus
from simple_iap.models.receipt import VerifyReceiptRequest, VerifyReceiptResponse
from simple_iap.observability.metrics import metrics

logger = get_logger(__name__)

NO_RESPONSE_MESSAGE = "no response from Receipt request"
NO_DATE_MESSAGE = "no receipt date found"


class ReceiptValidator:
    """Sends receipts to the verification endpoint and reads the expiration date."""

    def __init__(
        self,
        verify_url: str,
        shared_secret: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize receipt validator.

        Args:
            verify_url: verifyReceipt endpoint URL
            shared_secret: App Store Connect shared secret
            http_client: Client to send requests with (created lazily if omitted)
            timeout: Request timeout in seconds
        """
        if not shared_secret:
            raise ValueError("Shared secret is required")

        self.verify_url = verify_url
        self.shared_secret = shared_secret
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    @classmethod
    def from_settings(
        cls, settings: ReceiptSettings, http_client: httpx.AsyncClient | None = None
    ) -> "ReceiptValidator":
        """Build a validator from application settings."""
        return cls(
            verify_url=settings.verify_receipt_url,
            shared_secret=settings.iap_shared_secret,
            http_client=http_client,
            timeout=settings.http_timeout_seconds,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    def build_payload(self, receipt: bytes) -> VerifyReceiptRequest:
        """Base64-encode the receipt and pair it with the shared secret."""
        return VerifyReceiptRequest.from_receipt(receipt, self.shared_secret)

    async def send(self, request: VerifyReceiptRequest) -> bytes:
        """
        POST the request to the verification endpoint.

        Returns:
            Raw response body

        Raises:
            ReceiptValidationError: On transport error, non-2xx status or empty body.
                The message is the HTTP status code when one is known.
        """
        try:
            response = await self.http_client.post(
                self.verify_url,
                json=request.to_body(),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("receipt_request_transport_error", error=str(exc))
            raise ReceiptValidationError("") from exc

        if not response.is_success:
            logger.error(
                "receipt_request_failed",
                status=response.status_code,
                url=self.verify_url,
            )
            raise ReceiptValidationError(str(response.status_code))

        if not response.content:
            raise ReceiptValidationError(NO_RESPONSE_MESSAGE)

        return response.content

    @staticmethod
    def parse_response(body: bytes | str) -> datetime | None:
        """
        Read the expiration date of the last latest_receipt_info entry.

        Returns:
            Aware expiration datetime, or None if the body is not JSON, has no
            latest_receipt_info, or its last expires_date is missing or malformed
        """
        try:
            response = VerifyReceiptResponse.model_validate_json(body)
        except ValidationError as exc:
            logger.warning("receipt_response_invalid", error_count=exc.error_count())
            return None

        return response.latest_expiration()

    async def validate(self, receipt: bytes) -> ReceiptStatus:
        """
        Validate a receipt and report its latest expiration date.

        Args:
            receipt: Raw receipt bytes read from the device

        Returns:
            ReceiptExists with the expiration date, or ReceiptError with a
            human-readable message
        """
        started = time.perf_counter()
        status = await self._validate(receipt)
        metrics.record_receipt_validation(status, time.perf_counter() - started)
        return status

    async def _validate(self, receipt: bytes) -> ReceiptStatus:
        if not receipt:
            return ReceiptError(message="receipt is empty")

        request = self.build_payload(receipt)

        try:
            body = await self.send(request)
        except ReceiptValidationError as exc:
            return ReceiptError(message=exc.message)

        expiration_date = self.parse_response(body)
        if expiration_date is None:
            logger.warning("receipt_date_not_found")
            return ReceiptError(message=NO_DATE_MESSAGE)

        logger.info("receipt_validated", expires_date=expiration_date.isoformat())
        return ReceiptExists(expiration_date=expiration_date)

    async def close(self) -> None:
        """Close HTTP client if this validator created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
