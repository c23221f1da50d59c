"""
Structured logging for the purchase flow.

Every entry carries the service name and version, plus whatever the caller
bound with log_context() (the controller binds ``operation`` for purchases
and restores). Long-running hosts log JSON to stdout; the verify-receipt
command logs to stderr so its result stays alone on stdout.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor


def _app_context_processor(service_name: str, service_version: str) -> Processor:
    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["service"] = service_name
        event_dict["version"] = service_version
        return event_dict

    return add_app_context


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "simple-iap",
    service_version: str = "0.1.0",
    stream: TextIO | None = None,
) -> None:
    """
    Configure structlog on top of the standard logging module.

    Hosts pass the values from LoggingSettings (or any settings layer above it):
        setup_logging(
            settings.log_level,
            settings.log_format,
            settings.service_name,
            settings.service_version,
        )

    A JSON entry for a validated receipt looks like:
    {
        "event": "receipt_validated",
        "level": "info",
        "timestamp": "2025-06-01T12:00:00.123456Z",
        "logger": "simple_iap.services.receipt_validator",
        "service": "simple-iap",
        "version": "0.1.0",
        "operation": "purchase",
        "expires_date": "2099-01-01T00:00:00+00:00"
    }

    Args:
        log_level: Standard level name (DEBUG also renders exceptions in full)
        log_format: "json", anything else gives colored console output
        service_name: Value of the "service" key
        service_version: Value of the "version" key
        stream: Output stream, stdout when omitted
    """
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _app_context_processor(service_name, service_version),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for a simple_iap module, e.g. ``get_logger(__name__)``."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind structured context for the duration of a block.

    Used by the purchase controller so every entry logged while a purchase
    is submitted carries ``operation="purchase"``:

        with log_context(operation="purchase"):
            logger.info("payment_submitted", product_identifier=product.identifier)
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
