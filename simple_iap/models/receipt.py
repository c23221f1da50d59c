"""
Receipt verification wire models - Pydantic models for the verifyReceipt exchange.

Request:  {"receipt-data": <base64 receipt>, "password": <shared secret>}
Response: {"latest_receipt_info": [{"expires_date": "2099-01-01 00:00:00 Etc/GMT", ...}]}
"""

import base64
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field

# yyyy-MM-dd HH:mm:ss, followed by a time zone id (e.g. "Etc/GMT")
EXPIRES_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_expires_date(value: str) -> datetime:
    """
    Parse an App Store expires_date string into an aware datetime.

    Args:
        value: Date string like "2024-03-01 12:30:00 Etc/GMT"

    Returns:
        Timezone-aware datetime

    Raises:
        ValueError: If the date or zone id cannot be parsed
    """
    stamp, _, zone_id = value.strip().rpartition(" ")
    if not stamp or not zone_id:
        raise ValueError(f"Missing time zone in expires_date: {value!r}")

    naive = datetime.strptime(stamp, EXPIRES_DATE_FORMAT)
    try:
        zone = ZoneInfo(zone_id)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise ValueError(f"Unknown time zone in expires_date: {zone_id!r}") from exc

    return naive.replace(tzinfo=zone)


class VerifyReceiptRequest(BaseModel):
    """POST body sent to the verification endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    receipt_data: str = Field(..., alias="receipt-data", min_length=1)
    password: str = Field(..., min_length=1)

    @classmethod
    def from_receipt(cls, receipt: bytes, shared_secret: str) -> "VerifyReceiptRequest":
        """Build a request from raw receipt bytes."""
        encoded = base64.b64encode(receipt).decode("ascii")
        return cls(receipt_data=encoded, password=shared_secret)

    def to_body(self) -> dict[str, str]:
        """Serialize with the endpoint's hyphenated field names."""
        return self.model_dump(by_alias=True)


class LatestReceiptInfo(BaseModel):
    """One entry of latest_receipt_info. Only the fields read here are declared."""

    expires_date: str | None = None
    product_id: str | None = None
    transaction_id: str | None = None
    original_transaction_id: str | None = None


class VerifyReceiptResponse(BaseModel):
    """Response from the verification endpoint."""

    status: int | None = None
    environment: str | None = None
    latest_receipt_info: list[LatestReceiptInfo] | None = None

    def latest_expiration(self) -> datetime | None:
        """
        Expiration date of the last latest_receipt_info entry.

        Returns None when the list is missing or empty, the last entry has no
        expires_date, or the date cannot be parsed.
        """
        if not self.latest_receipt_info:
            return None

        expires_date = self.latest_receipt_info[-1].expires_date
        if expires_date is None:
            return None

        try:
            return parse_expires_date(expires_date)
        except ValueError:
            return None
