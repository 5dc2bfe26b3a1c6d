"""Pydantic models for payment core entities."""

from .enums import (
    Currency,
    ExportFormat,
    RiskLevel,
    SignatureScheme,
    TransactionStatus,
    WebhookEventName,
)
from .errors import (
    ERROR_CLASSIFICATION,
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    USER_MESSAGES,
    ErrorCode,
    ErrorRecord,
    ErrorResponse,
    ErrorSeverity,
    ErrorStats,
    ErrorType,
    LemonSqueezyErrorType,
    LemonSqueezyServiceError,
    PaymentCoreError,
)
from .payment import FieldError, PaymentFormData, PaymentResult
from .receipt import (
    BusinessDetails,
    ComplianceResult,
    CurrencyBreakdown,
    CustomerDetails,
    MoRReport,
    Receipt,
    TaxInfo,
)
from .security import (
    AmountRiskAssessment,
    RateLimitConfig,
    RateLimitEntry,
    RateLimitResult,
    SecurityStats,
    SuspiciousActivity,
)
from .transaction import (
    CustomerInfo,
    StatusAuditEntry,
    Transaction,
    TransactionFilter,
    TransactionStats,
)
from .webhook import (
    LemonSqueezyWebhookPayload,
    WebhookAttributes,
    WebhookData,
    WebhookEvent,
    WebhookMeta,
    WebhookResult,
    WebhookStats,
)

__all__ = [
    # Enums
    "Currency",
    "ExportFormat",
    "RiskLevel",
    "SignatureScheme",
    "TransactionStatus",
    "WebhookEventName",
    # Errors
    "ERROR_CLASSIFICATION",
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "USER_MESSAGES",
    "ErrorCode",
    "ErrorRecord",
    "ErrorResponse",
    "ErrorSeverity",
    "ErrorStats",
    "ErrorType",
    "LemonSqueezyErrorType",
    "LemonSqueezyServiceError",
    "PaymentCoreError",
    # Payment
    "FieldError",
    "PaymentFormData",
    "PaymentResult",
    # Receipt
    "BusinessDetails",
    "ComplianceResult",
    "CurrencyBreakdown",
    "CustomerDetails",
    "MoRReport",
    "Receipt",
    "TaxInfo",
    # Security
    "AmountRiskAssessment",
    "RateLimitConfig",
    "RateLimitEntry",
    "RateLimitResult",
    "SecurityStats",
    "SuspiciousActivity",
    # Transaction
    "CustomerInfo",
    "StatusAuditEntry",
    "Transaction",
    "TransactionFilter",
    "TransactionStats",
    # Webhook
    "LemonSqueezyWebhookPayload",
    "WebhookAttributes",
    "WebhookData",
    "WebhookEvent",
    "WebhookMeta",
    "WebhookResult",
    "WebhookStats",
]
