"""
Application Configuration - Pydantic Settings for type-safe config.

Three layers, each loadable on its own:
- LoggingSettings: log level/format and service identity, nothing required
- ReceiptSettings: what receipt validation needs (shared secret, endpoint)
- Settings: the full purchase flow (adds the product identifier)

FAIL FAST - Required values are validated on load.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_VERIFY_RECEIPT_URL = "https://buy.itunes.apple.com/verifyReceipt"


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class LoggingSettings(BaseSettings):
    """Logging settings loaded from environment variables."""

    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    service_name: str = "simple-iap"
    service_version: str = "0.1.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class ReceiptSettings(LoggingSettings):
    """Settings for validating receipts against the verification endpoint."""

    # App Store Connect shared secret, sent with every receipt
    iap_shared_secret: str = ""

    verify_receipt_url: str = DEFAULT_VERIFY_RECEIPT_URL
    http_timeout_seconds: float = 30.0

    def critical_errors(self) -> list[str]:
        """Problems that make these settings unusable."""
        errors: list[str] = []

        if not self.iap_shared_secret:
            errors.append("IAP_SHARED_SECRET is required but empty or missing")
        if not self.verify_receipt_url.startswith(("https://", "http://")):
            errors.append(
                f"VERIFY_RECEIPT_URL must be an http(s) URL, got: {self.verify_receipt_url[:20]}..."
            )
        if self.http_timeout_seconds <= 0:
            errors.append(f"HTTP_TIMEOUT_SECONDS must be positive: {self.http_timeout_seconds}")

        return errors

    @model_validator(mode="after")
    def validate_critical_config(self) -> "ReceiptSettings":
        """
        FAIL FAST: Validate critical configuration on load.

        Every problem is reported at once, on stderr and in the raised error.
        """
        errors = self.critical_errors()

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - IAP CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


class Settings(ReceiptSettings):
    """Settings for the full purchase flow."""

    # Subscription product id in App Store Connect
    iap_product_identifier: str = ""

    receipt_path: str = "StoreKit/receipt"

    def critical_errors(self) -> list[str]:
        """Receipt problems plus a missing product identifier."""
        errors = super().critical_errors()
        if not self.iap_product_identifier:
            # The transaction observer cannot match anything without it
            errors.append("IAP_PRODUCT_IDENTIFIER is required but empty or missing")
        return errors


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get settings instance, loading it on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call reloads the environment."""
    global _settings
    _settings = None
