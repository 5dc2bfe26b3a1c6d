"""FastAPI exception handlers converting PaymentCoreError to HTTP responses.

The ErrorCode-to-HTTP status mapping follows REST conventions:
- 400 Bad Request: Validation failures
- 402 Payment Required: Declined or cancelled payments
- 403 Forbidden: Access token, session or CSRF failures
- 404 Not Found: Unknown transaction
- 429 Too Many Requests: Rate limiting
- 502/503: Processor failures

Usage:
    from payment_core.api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging
import math

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_402_PAYMENT_REQUIRED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from payment_core.models.errors import ErrorCode, PaymentCoreError

logger = logging.getLogger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Validation -> 400 Bad Request
    ErrorCode.INVALID_PAYMENT_DATA: HTTP_400_BAD_REQUEST,
    ErrorCode.UNSUPPORTED_CURRENCY: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_AMOUNT: HTTP_400_BAD_REQUEST,
    ErrorCode.HIGH_RISK_PAYMENT: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: HTTP_400_BAD_REQUEST,
    ErrorCode.MALFORMED_WEBHOOK_PAYLOAD: HTTP_400_BAD_REQUEST,
    # Payment outcome -> 402 Payment Required
    ErrorCode.PAYMENT_DECLINED: HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.PAYMENT_CANCELLED: HTTP_402_PAYMENT_REQUIRED,
    # Security -> 403 Forbidden
    ErrorCode.ACCESS_DENIED: HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_SESSION: HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_CSRF_TOKEN: HTTP_403_FORBIDDEN,
    # Not found -> 404
    ErrorCode.TRANSACTION_NOT_FOUND: HTTP_404_NOT_FOUND,
    # Rate limiting -> 429
    ErrorCode.RATE_LIMITED: HTTP_429_TOO_MANY_REQUESTS,
    # Processor -> 502/503
    ErrorCode.CHECKOUT_FAILED: HTTP_502_BAD_GATEWAY,
    ErrorCode.CHECKOUT_URL_MISSING: HTTP_502_BAD_GATEWAY,
    ErrorCode.PROCESSOR_UNREACHABLE: HTTP_503_SERVICE_UNAVAILABLE,
    # Server-side configuration
    ErrorCode.CONFIGURATION_MISSING: HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode, defaulting to 400."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def payment_core_error_handler(request: Request, exc: PaymentCoreError) -> JSONResponse:
    """Convert a PaymentCoreError to an ErrorResponse body."""
    status_code = get_http_status_for_error(exc.code)
    headers = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(math.ceil(exc.retry_after))}
    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
        headers=headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback for uncaught exceptions; internal details are not exposed."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL",
            "message": "An unexpected error occurred",
            "user_message": "An unexpected error occurred. Please try again.",
            "recovery": "Please try again later or contact support",
            "details": None,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(PaymentCoreError, payment_core_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
