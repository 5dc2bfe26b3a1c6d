"""Logging helpers for the payment core.

Every request handled by the API runs under a correlation ID (see
``CorrelationIdMiddleware``). Records emitted while it is set carry it as
``record.correlation_id``; ``PaymentContextFormatter`` prints it together with
any transaction or webhook fields passed through ``extra``::

    logger = get_logger(__name__)
    logger.info("Checkout created", extra={"transaction_id": "pending-1700000000000"})
    # [3f2c...] 2024-05-01 10:00:00 INFO payment_core.x: Checkout created {transaction_id=pending-...}
"""

import logging
import uuid
from collections.abc import Mapping
from contextvars import ContextVar
from typing import Any

UNSET_CORRELATION_ID = "-"

# Record attributes surfaced by PaymentContextFormatter, in print order
CONTEXT_FIELDS = (
    "operation",
    "transaction_id",
    "checkout_id",
    "event_name",
    "resource_id",
    "status",
    "amount",
    "currency",
    "activity",
    "identifier",
    "result",
    "error",
)

_correlation_id: ContextVar[str | None] = ContextVar("payment_core_correlation_id", default=None)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation ID to the current context, generating one if missing."""
    value = correlation_id or uuid.uuid4().hex
    _correlation_id.set(value)
    return value


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Stamps the active correlation ID onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = get_correlation_id() or UNSET_CORRELATION_ID
        return True


class PaymentContextFormatter(logging.Formatter):
    """Prefixes the correlation ID and appends known payment context fields."""

    def format(self, record: logging.LogRecord) -> str:
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id is None:
            correlation_id = get_correlation_id() or UNSET_CORRELATION_ID

        line = f"[{correlation_id}] {super().format(record)}"
        message = record.getMessage()
        fields = []
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is None:
                continue
            field = f"{name}={value}"
            # helpers below already inline their context into the message
            if field not in message:
                fields.append(field)
        if fields:
            line = f"{line} {{{', '.join(fields)}}}"
        return line


def get_logger(name: str) -> logging.Logger:
    """``logging.getLogger`` with a CorrelationIdFilter attached once."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install a root handler using PaymentContextFormatter.

    Safe to call more than once; an existing structured handler is reused.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if isinstance(handler.formatter, PaymentContextFormatter):
            return
    handler = logging.StreamHandler()
    handler.setFormatter(
        PaymentContextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


def _build_message(prefix: str, context: dict[str, Any], skip: set[str]) -> str:
    parts = [prefix]
    for key, value in context.items():
        if key not in skip:
            parts.append(f"{key}={value}")
    return " | ".join(parts)


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    transaction_id: str | None = None,
    amount: float | None = None,
    currency: str | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a payment operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "create_checkout", "log_transaction")
        transaction_id: Transaction ID if available
        amount: Amount in major units if relevant
        currency: Currency code if relevant
        status: Transaction status
        error: Error message if operation failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation}

    if transaction_id:
        context["transaction_id"] = transaction_id
    if amount is not None:
        context["amount"] = amount
    if currency:
        context["currency"] = currency
    if status:
        context["status"] = status
    if error:
        context["error"] = error

    context.update(extra)

    message = _build_message(f"Payment operation: {operation}", context, {"operation"})

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_webhook_event(
    logger: logging.Logger,
    event_name: str,
    resource_id: str,
    *,
    transaction_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a webhook event with structured context.

    Args:
        logger: Logger instance
        event_name: Processor event name (e.g., "order_created")
        resource_id: Processor resource ID (order or subscription)
        transaction_id: Associated ledger transaction ID if available
        result: Processing result (success, duplicate, ignored, error)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "event_name": event_name,
        "resource_id": resource_id,
    }

    if transaction_id:
        context["transaction_id"] = transaction_id
    if result:
        context["result"] = result
    if error:
        context["error"] = error

    context.update(extra)

    message = _build_message("Webhook event", context, set())

    if result == "error":
        logger.error(message, extra=context)
    elif result in ("duplicate", "ignored"):
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_security_event(
    logger: logging.Logger,
    activity: str,
    identifier: str,
    details: Mapping[str, Any] | None = None,
) -> None:
    """Log a suspicious-activity event at WARNING level.

    ``activity`` and ``identifier`` take precedence over same-named keys in
    ``details``.
    """
    context: dict[str, Any] = {**(details or {}), "activity": activity, "identifier": identifier}
    message = _build_message(f"Suspicious activity: {activity}", context, {"activity"})
    logger.warning(message, extra={"security": context})
