"""Utility helpers for the payment core."""

from .amount import (
    amount_to_minor_units,
    decimal_places,
    format_amount,
    minor_units_to_amount,
)
from .logging import (
    clear_correlation_id,
    configure_logging,
    get_correlation_id,
    get_logger,
    log_payment_operation,
    log_security_event,
    log_webhook_event,
    set_correlation_id,
)

__all__ = [
    "amount_to_minor_units",
    "clear_correlation_id",
    "configure_logging",
    "decimal_places",
    "format_amount",
    "get_correlation_id",
    "get_logger",
    "log_payment_operation",
    "log_security_event",
    "log_webhook_event",
    "minor_units_to_amount",
    "set_correlation_id",
]
