"""
Receipt verification command.

Validates a receipt file against the verifyReceipt endpoint and reports
whether the subscription is active.

Examples:
  # Use IAP_SHARED_SECRET / VERIFY_RECEIPT_URL / LOG_LEVEL from the environment
  simple-iap verify-receipt receipt.bin

  # Check against the sandbox
  simple-iap verify-receipt receipt.bin \\
      --url https://sandbox.itunes.apple.com/verifyReceipt --secret abc123
"""

import argparse
import asyncio
import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from structlog import get_logger

from simple_iap.config import ConfigurationError, ReceiptSettings
from simple_iap.models.domain import ReceiptExists
from simple_iap.observability.logging import setup_logging
from simple_iap.services.receipt_validator import ReceiptValidator

logger = get_logger(__name__)

EXIT_ACTIVE = 0
EXIT_INACTIVE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="simple-iap",
        description="Validate App Store subscription receipts",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    verify = subparsers.add_parser(
        "verify-receipt",
        help="Validate a receipt file and print its expiration date",
    )
    verify.add_argument("receipt_file", type=Path, help="Path to the raw receipt file")
    verify.add_argument("--url", help="Verification endpoint (default: VERIFY_RECEIPT_URL)")
    verify.add_argument("--secret", help="Shared secret (default: IAP_SHARED_SECRET)")
    verify.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    return parser


def load_settings(args: argparse.Namespace) -> ReceiptSettings:
    """Receipt settings from the environment, with command-line values taking priority."""
    overrides = {
        "verify_receipt_url": args.url,
        "iap_shared_secret": args.secret,
    }
    return ReceiptSettings(**{key: value for key, value in overrides.items() if value})


async def verify_receipt(receipt_file: Path, settings: ReceiptSettings) -> int:
    """Validate receipt_file and print the result. Returns the exit code."""
    receipt = receipt_file.read_bytes()

    validator = ReceiptValidator.from_settings(settings)
    try:
        status = await validator.validate(receipt)
    finally:
        await validator.close()

    if not isinstance(status, ReceiptExists):
        print(f"Receipt error: {status.message or 'request failed'}")
        return EXIT_INACTIVE

    active = status.is_active(datetime.now(UTC))
    print(f"Expires: {status.expiration_date.isoformat()}")
    print(f"Active:  {'yes' if active else 'no'}")
    return EXIT_ACTIVE if active else EXIT_INACTIVE


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the simple-iap command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.receipt_file.is_file():
        print(f"Receipt file not found: {args.receipt_file}", file=sys.stderr)
        return EXIT_USAGE

    try:
        settings = load_settings(args)
    except ConfigurationError:
        print("Pass --url and --secret or fix the configuration above", file=sys.stderr)
        return EXIT_USAGE

    # Logs go to stderr so stdout carries only the result
    setup_logging(
        log_level="DEBUG" if args.verbose else settings.log_level,
        log_format=settings.log_format,
        service_name=settings.service_name,
        service_version=settings.service_version,
        stream=sys.stderr,
    )

    logger.debug("verifying_receipt", file=str(args.receipt_file), url=settings.verify_receipt_url)
    return asyncio.run(verify_receipt(args.receipt_file, settings))


if __name__ == "__main__":
    sys.exit(main())
