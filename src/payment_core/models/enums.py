"""Enumerations shared across the payment core."""

from enum import Enum


class TransactionStatus(str, Enum):
    """Lifecycle status of a ledger transaction."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Currency(str, Enum):
    """Currencies accepted at checkout."""

    ILS = "ILS"
    USD = "USD"
    EUR = "EUR"


class RiskLevel(str, Enum):
    """Risk verdict of an amount assessment."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ExportFormat(str, Enum):
    """Ledger export formats."""

    CSV = "csv"
    JSON = "json"


class WebhookEventName(str, Enum):
    """Lemon Squeezy webhook events handled by the core."""

    ORDER_CREATED = "order_created"
    ORDER_REFUNDED = "order_refunded"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"


class SignatureScheme(str, Enum):
    """How incoming webhook signatures are verified."""

    HMAC_SHA256 = "hmac_sha256"
    SHARED_SECRET = "shared_secret"
