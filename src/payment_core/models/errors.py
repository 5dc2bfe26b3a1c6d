"""Error taxonomy for the payment core.

Errors raised inside the package carry an ``ErrorCode`` and therefore a
fixed classification (type, severity, retryability). Only exceptions that
cross an untyped boundary are classified heuristically by the ErrorHandler.
"""

import datetime as dt
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorType(str, Enum):
    """Broad failure category of a classified error."""

    VALIDATION = "validation"
    NETWORK = "network"
    PAYMENT = "payment"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CLIENT = "client"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Ordered severity of a classified error."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_ORDER = [
    ErrorSeverity.LOW,
    ErrorSeverity.MEDIUM,
    ErrorSeverity.HIGH,
    ErrorSeverity.CRITICAL,
]


class ErrorCode(str, Enum):
    """Error codes raised by the payment core."""

    # Checkout error codes (ERR_PAY_001-ERR_PAY_008)
    INVALID_PAYMENT_DATA = "ERR_PAY_001"
    UNSUPPORTED_CURRENCY = "ERR_PAY_002"
    INVALID_AMOUNT = "ERR_PAY_003"
    HIGH_RISK_PAYMENT = "ERR_PAY_004"
    CHECKOUT_FAILED = "ERR_PAY_005"
    CHECKOUT_URL_MISSING = "ERR_PAY_006"
    PROCESSOR_UNREACHABLE = "ERR_PAY_007"
    PAYMENT_DECLINED = "ERR_PAY_008"
    PAYMENT_CANCELLED = "ERR_PAY_009"

    # Security error codes (ERR_SEC_001-ERR_SEC_005)
    RATE_LIMITED = "ERR_SEC_001"
    ACCESS_DENIED = "ERR_SEC_002"
    INVALID_SESSION = "ERR_SEC_003"
    INVALID_CSRF_TOKEN = "ERR_SEC_004"

    # Webhook error codes (ERR_WH_001-ERR_WH_002)
    INVALID_WEBHOOK_SIGNATURE = "ERR_WH_001"
    MALFORMED_WEBHOOK_PAYLOAD = "ERR_WH_002"

    # Ledger and configuration
    TRANSACTION_NOT_FOUND = "ERR_TXN_001"
    CONFIGURATION_MISSING = "ERR_CFG_001"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_PAYMENT_DATA: "Invalid payment data",
    ErrorCode.UNSUPPORTED_CURRENCY: "Currency is not supported",
    ErrorCode.INVALID_AMOUNT: "Invalid payment amount",
    ErrorCode.HIGH_RISK_PAYMENT: "Payment was rejected by risk checks",
    ErrorCode.CHECKOUT_FAILED: "Payment service could not create a checkout",
    ErrorCode.CHECKOUT_URL_MISSING: "Invalid response from Lemon Squeezy - missing checkout URL",
    ErrorCode.PROCESSOR_UNREACHABLE: "Network connection to the payment service failed",
    ErrorCode.PAYMENT_DECLINED: "Payment was declined",
    ErrorCode.PAYMENT_CANCELLED: "Payment was cancelled by the user",
    ErrorCode.RATE_LIMITED: "Too many payment attempts",
    ErrorCode.ACCESS_DENIED: "Access token is missing or invalid",
    ErrorCode.INVALID_SESSION: "Session token is missing, invalid or expired",
    ErrorCode.INVALID_CSRF_TOKEN: "CSRF token is missing or invalid",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.MALFORMED_WEBHOOK_PAYLOAD: "Webhook payload could not be parsed",
    ErrorCode.TRANSACTION_NOT_FOUND: "Transaction not found",
    ErrorCode.CONFIGURATION_MISSING: "Payment system configuration is incomplete",
}

# Messages safe to show to the customer
USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_PAYMENT_DATA: "Please check your input and try again.",
    ErrorCode.UNSUPPORTED_CURRENCY: "Please select a valid currency.",
    ErrorCode.INVALID_AMOUNT: "Invalid payment amount. Please check the amount and try again.",
    ErrorCode.HIGH_RISK_PAYMENT: "This payment cannot be processed online. Please contact support.",
    ErrorCode.CHECKOUT_FAILED: "Payment service is temporarily unavailable. Please try again later.",
    ErrorCode.CHECKOUT_URL_MISSING: "Payment processing failed. Please try again or contact support.",
    ErrorCode.PROCESSOR_UNREACHABLE: "Network connection failed. Please check your internet connection.",
    ErrorCode.PAYMENT_DECLINED: "Your payment was declined. Please try a different payment method.",
    ErrorCode.PAYMENT_CANCELLED: "The payment was cancelled.",
    ErrorCode.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorCode.ACCESS_DENIED: "Access denied. You do not have permission to perform this action.",
    ErrorCode.INVALID_SESSION: "Your session has expired. Please reload the page.",
    ErrorCode.INVALID_CSRF_TOKEN: "Your session has expired. Please reload the page.",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Authentication failed. Please verify your credentials.",
    ErrorCode.MALFORMED_WEBHOOK_PAYLOAD: "Please check your input and try again.",
    ErrorCode.TRANSACTION_NOT_FOUND: "The requested transaction was not found.",
    ErrorCode.CONFIGURATION_MISSING: "Payment system is temporarily unavailable. Please try again later.",
}

# Recovery hints for operators and callers
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.INVALID_PAYMENT_DATA: "Correct the highlighted fields and resubmit",
    ErrorCode.UNSUPPORTED_CURRENCY: "Use one of the supported currencies",
    ErrorCode.INVALID_AMOUNT: "Use a positive amount with at most two decimal places",
    ErrorCode.HIGH_RISK_PAYMENT: "Review the payment manually with the customer",
    ErrorCode.CHECKOUT_FAILED: "Try again or contact support",
    ErrorCode.CHECKOUT_URL_MISSING: "Try again or contact support",
    ErrorCode.PROCESSOR_UNREACHABLE: "Check connectivity and retry",
    ErrorCode.PAYMENT_DECLINED: "Suggest a different payment method",
    ErrorCode.PAYMENT_CANCELLED: "Offer to restart the checkout",
    ErrorCode.RATE_LIMITED: "Wait for the rate-limit window to reset",
    ErrorCode.ACCESS_DENIED: "Request a valid access link",
    ErrorCode.INVALID_SESSION: "Request a new session token",
    ErrorCode.INVALID_CSRF_TOKEN: "Request a new session and CSRF token",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.MALFORMED_WEBHOOK_PAYLOAD: "Inspect the raw webhook delivery",
    ErrorCode.TRANSACTION_NOT_FOUND: "Verify the transaction ID",
    ErrorCode.CONFIGURATION_MISSING: "Verify SSM parameters and environment variables",
}

# (type, severity, retryable) per code
ERROR_CLASSIFICATION: dict[ErrorCode, tuple[ErrorType, ErrorSeverity, bool]] = {
    ErrorCode.INVALID_PAYMENT_DATA: (ErrorType.VALIDATION, ErrorSeverity.LOW, False),
    ErrorCode.UNSUPPORTED_CURRENCY: (ErrorType.VALIDATION, ErrorSeverity.LOW, False),
    ErrorCode.INVALID_AMOUNT: (ErrorType.VALIDATION, ErrorSeverity.LOW, False),
    ErrorCode.HIGH_RISK_PAYMENT: (ErrorType.PAYMENT, ErrorSeverity.HIGH, False),
    ErrorCode.CHECKOUT_FAILED: (ErrorType.PAYMENT, ErrorSeverity.HIGH, True),
    ErrorCode.CHECKOUT_URL_MISSING: (ErrorType.PAYMENT, ErrorSeverity.HIGH, True),
    ErrorCode.PROCESSOR_UNREACHABLE: (ErrorType.NETWORK, ErrorSeverity.MEDIUM, True),
    ErrorCode.PAYMENT_DECLINED: (ErrorType.PAYMENT, ErrorSeverity.HIGH, False),
    ErrorCode.PAYMENT_CANCELLED: (ErrorType.CLIENT, ErrorSeverity.LOW, False),
    ErrorCode.RATE_LIMITED: (ErrorType.RATE_LIMIT, ErrorSeverity.MEDIUM, True),
    ErrorCode.ACCESS_DENIED: (ErrorType.AUTHORIZATION, ErrorSeverity.HIGH, False),
    ErrorCode.INVALID_SESSION: (ErrorType.AUTHENTICATION, ErrorSeverity.HIGH, False),
    ErrorCode.INVALID_CSRF_TOKEN: (ErrorType.AUTHENTICATION, ErrorSeverity.HIGH, False),
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: (ErrorType.AUTHENTICATION, ErrorSeverity.HIGH, False),
    ErrorCode.MALFORMED_WEBHOOK_PAYLOAD: (ErrorType.VALIDATION, ErrorSeverity.MEDIUM, False),
    ErrorCode.TRANSACTION_NOT_FOUND: (ErrorType.CLIENT, ErrorSeverity.LOW, False),
    ErrorCode.CONFIGURATION_MISSING: (ErrorType.SERVER, ErrorSeverity.CRITICAL, False),
}


class ErrorRecord(BaseModel):
    """Uniform record produced by classifying any failure."""

    type: ErrorType
    severity: ErrorSeverity
    message: str = Field(..., description="Technical message")
    user_message: str = Field(..., description="Message safe to display")
    code: str | None = None
    details: Any = None
    timestamp: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
    context: str | None = None
    retryable: bool = True
    retry_after: float | None = Field(
        default=None, description="Server-advised delay in seconds"
    )

    @property
    def auto_clears(self) -> bool:
        """Low-severity errors are dismissed automatically by the UI."""
        return self.severity == ErrorSeverity.LOW


class ErrorResponse(BaseModel):
    """Standard error response body for API failures."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    user_message: str
    recovery: str
    details: Optional[dict[str, Any]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code."""
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            user_message=USER_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class PaymentCoreError(Exception):
    """Exception raised by payment core operations.

    The code fixes the classification; ``retryable`` and ``retry_after`` may
    be overridden by the raise site (e.g. a 429 from the processor).
    """

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
        *,
        message: str | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
    ):
        self.code = code
        self.message = message or ERROR_MESSAGES[code]
        self.user_message = USER_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        error_type, severity, default_retryable = ERROR_CLASSIFICATION[code]
        self.error_type = error_type
        self.severity = severity
        self.retryable = default_retryable if retryable is None else retryable
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse for API responses."""
        return ErrorResponse.from_code(self.code, self.details)


class LemonSqueezyErrorType(str, Enum):
    """Processor-specific failure taxonomy."""

    PAYMENT_DECLINED = "PAYMENT_DECLINED"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    USER_CANCELLED = "USER_CANCELLED"


PROCESSOR_ERROR_CODES: dict[LemonSqueezyErrorType, ErrorCode] = {
    LemonSqueezyErrorType.PAYMENT_DECLINED: ErrorCode.PAYMENT_DECLINED,
    LemonSqueezyErrorType.INVALID_AMOUNT: ErrorCode.INVALID_AMOUNT,
    LemonSqueezyErrorType.NETWORK_ERROR: ErrorCode.PROCESSOR_UNREACHABLE,
    LemonSqueezyErrorType.API_ERROR: ErrorCode.CHECKOUT_FAILED,
    LemonSqueezyErrorType.USER_CANCELLED: ErrorCode.PAYMENT_CANCELLED,
}


class LemonSqueezyServiceError(PaymentCoreError):
    """Raised when a Lemon Squeezy operation fails."""

    def __init__(
        self,
        error_type: LemonSqueezyErrorType,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
    ) -> None:
        details: dict[str, Any] = {"processor_error": error_type.value}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            PROCESSOR_ERROR_CODES[error_type],
            details,
            message=message,
            retryable=retryable,
            retry_after=retry_after,
        )
        self.processor_error_type = error_type
        self.status_code = status_code


class ErrorStats(BaseModel):
    """Counters over the classified-error ring buffer."""

    total: int = 0
    by_type: dict[ErrorType, int] = Field(default_factory=dict)
    by_severity: dict[ErrorSeverity, int] = Field(default_factory=dict)
    recent: int = Field(default=0, description="Errors recorded within the last hour")
