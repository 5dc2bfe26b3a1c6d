"""Payment core services."""

from .error_handler import ErrorHandler, HttpErrorReporter
from .lemonsqueezy_service import LemonSqueezyService, to_processor_error
from .receipt_service import ReceiptService
from .retry import RetryOrchestrator
from .security_guard import SecurityGuard
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .storage import (
    DynamoDBStore,
    InMemoryStore,
    KeyValueStore,
    StorageError,
    StorageQuotaExceededError,
)
from .transaction_ledger import TransactionLedger
from .webhook_handler import WebhookHandler

__all__ = [
    "DynamoDBStore",
    "ErrorHandler",
    "HttpErrorReporter",
    "InMemoryStore",
    "KeyValueStore",
    "LemonSqueezyService",
    "ReceiptService",
    "RetryOrchestrator",
    "SSMService",
    "SSMServiceError",
    "SecurityGuard",
    "StorageError",
    "StorageQuotaExceededError",
    "TransactionLedger",
    "WebhookHandler",
    "get_ssm_service",
    "to_processor_error",
]
