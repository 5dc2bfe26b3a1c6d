"""Error classification, logging and reporting.

Normalizes any failure into an ``ErrorRecord``:

- ``PaymentCoreError`` raised inside this package carries its own classification
- HTTP errors (``httpx.HTTPStatusError`` or anything exposing ``response.status``)
  are classified by status code
- transport failures are network errors
- other exceptions fall back to keyword matching on the message
- strings, caller-asserted ``{"type": ...}`` objects and unknown values are
  handled last
"""

import datetime as dt
import json
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from itertools import islice
from typing import Any, TypeVar

import httpx

from payment_core.models.errors import (
    ErrorRecord,
    ErrorSeverity,
    ErrorStats,
    ErrorType,
    PaymentCoreError,
)
from payment_core.services.retry import RetryOrchestrator

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ERROR_LOG_SIZE = 1000

GENERIC_USER_MESSAGE = "An unexpected error occurred. Please try again."

# (keywords, type, severity, retryable, user message); first match wins
MESSAGE_RULES: list[tuple[tuple[str, ...], ErrorType, ErrorSeverity, bool, str]] = [
    (
        ("network", "fetch"),
        ErrorType.NETWORK,
        ErrorSeverity.MEDIUM,
        True,
        "Network connection failed. Please check your internet connection and try again.",
    ),
    (
        ("validation", "invalid"),
        ErrorType.VALIDATION,
        ErrorSeverity.LOW,
        False,
        "Please check your input and try again.",
    ),
    (
        ("payment", "transaction"),
        ErrorType.PAYMENT,
        ErrorSeverity.HIGH,
        True,
        "Payment processing failed. Please try again or contact support.",
    ),
    (
        ("auth",),
        ErrorType.AUTHENTICATION,
        ErrorSeverity.HIGH,
        False,
        "Authentication failed. Please verify your credentials.",
    ),
    (
        ("rate limit", "too many"),
        ErrorType.RATE_LIMIT,
        ErrorSeverity.MEDIUM,
        True,
        "Too many requests. Please wait a moment and try again.",
    ),
]

HTTP_USER_MESSAGES: dict[int, str] = {
    400: "Invalid request. Please check your input.",
    401: "Authentication required. Please sign in.",
    403: "Access denied. You do not have permission to perform this action.",
    404: "The requested resource was not found.",
    429: "Too many requests. Please wait and try again.",
}

Reporter = Callable[[ErrorRecord], None]


class HttpErrorReporter:
    """Posts error records as JSON to a reporting endpoint."""

    def __init__(
        self, url: str, *, client: httpx.Client | None = None, timeout: float = 5.0
    ) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def __call__(self, record: ErrorRecord) -> None:
        response = self._client.post(self.url, json=record.model_dump(mode="json"))
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


def _http_response(error: Any) -> Any:
    """Return the response object of an HTTP-like error, if any."""
    if isinstance(error, Mapping):
        response = error.get("response")
    else:
        response = getattr(error, "response", None)
    if response is None:
        return None
    if _status_of(response) is None:
        return None
    return response


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _status_of(response: Any) -> int | None:
    for name in ("status_code", "status"):
        value = _field(response, name)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _parse_retry_after(headers: Any) -> float | None:
    if not headers:
        return None
    value = None
    if hasattr(headers, "get"):
        value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _response_details(response: Any) -> Any:
    if isinstance(response, httpx.Response):
        try:
            return response.json()
        except ValueError:
            return response.text or None
    return _field(response, "data")


def _serialize(value: Any) -> str:
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return repr(value)


class ErrorHandler:
    """Classifies failures and keeps a bounded log of recent errors.

    Args:
        reporter: Callable receiving records of severity medium or higher.
            Reporting is best-effort; reporter failures are logged only.
        max_retries: Attempt budget used by create_retry_function.
        retry_delay: Base back-off delay in seconds for create_retry_function.
        enable_logging: Whether records are written to the logger.
        max_log_size: Capacity of the in-memory ring buffer.
    """

    def __init__(
        self,
        *,
        reporter: Reporter | None = None,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        enable_logging: bool = True,
        max_log_size: int = MAX_ERROR_LOG_SIZE,
    ) -> None:
        self.reporter = reporter
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.enable_logging = enable_logging
        self._log: deque[ErrorRecord] = deque(maxlen=max_log_size)

    def handle_error(self, error: Any, context: str | None = None) -> ErrorRecord:
        """Classify, record and report a failure.

        Args:
            error: Anything that went wrong: an exception, an HTTP-like error
                object, a string, a caller-built ``{"type": ...}`` mapping.
            context: Where the failure happened, e.g. "payment_processing".

        Returns:
            The classified ErrorRecord.
        """
        record = self._classify(error, context)

        self._log.appendleft(record)
        if self.enable_logging:
            self._log_record(record)
        if record.severity >= ErrorSeverity.MEDIUM:
            self._report(record)

        return record

    def _classify(self, error: Any, context: str | None) -> ErrorRecord:
        if isinstance(error, PaymentCoreError):
            return self._from_payment_core_error(error, context)

        response = _http_response(error)
        if response is not None:
            return self._from_http_response(response, context)

        if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
            return ErrorRecord(
                type=ErrorType.NETWORK,
                severity=ErrorSeverity.MEDIUM,
                message=str(error) or type(error).__name__,
                user_message=MESSAGE_RULES[0][4],
                details={"exception": type(error).__name__},
                context=context,
                retryable=True,
            )

        if isinstance(error, BaseException):
            return self._from_exception(error, context)

        if isinstance(error, str):
            return ErrorRecord(
                type=ErrorType.CLIENT,
                severity=ErrorSeverity.LOW,
                message=error,
                user_message=error,
                context=context,
                retryable=True,
            )

        if _field(error, "type") is not None:
            return self._from_custom(error, context)

        return ErrorRecord(
            type=ErrorType.UNKNOWN,
            severity=ErrorSeverity.MEDIUM,
            message=_serialize(error),
            user_message=GENERIC_USER_MESSAGE,
            details=_serialize(error),
            context=context,
            retryable=True,
        )

    @staticmethod
    def _from_payment_core_error(error: PaymentCoreError, context: str | None) -> ErrorRecord:
        return ErrorRecord(
            type=error.error_type,
            severity=error.severity,
            message=error.message,
            user_message=error.user_message,
            code=error.code.value,
            details=error.details,
            context=context,
            retryable=error.retryable,
            retry_after=error.retry_after,
        )

    @staticmethod
    def _from_http_response(response: Any, context: str | None) -> ErrorRecord:
        status = _status_of(response) or 0
        status_text = (
            _field(response, "reason_phrase") or _field(response, "status_text") or "Unknown"
        )

        error_type = ErrorType.SERVER
        severity = ErrorSeverity.MEDIUM
        retryable = True
        retry_after = None
        user_message = "Server error occurred. Please try again later."

        if 400 <= status < 500:
            error_type = ErrorType.CLIENT
            retryable = False
            user_message = HTTP_USER_MESSAGES.get(
                status, "Request failed. Please check your input and try again."
            )
            if status == 401:
                error_type = ErrorType.AUTHENTICATION
                severity = ErrorSeverity.HIGH
            elif status == 403:
                error_type = ErrorType.AUTHORIZATION
                severity = ErrorSeverity.HIGH
            elif status == 429:
                error_type = ErrorType.RATE_LIMIT
                retryable = True
                retry_after = _parse_retry_after(_field(response, "headers"))
        elif status >= 500:
            severity = ErrorSeverity.HIGH

        return ErrorRecord(
            type=error_type,
            severity=severity,
            message=f"HTTP {status}: {status_text}",
            user_message=user_message,
            code=str(status),
            details=_response_details(response),
            context=context,
            retryable=retryable,
            retry_after=retry_after,
        )

    @staticmethod
    def _from_exception(error: BaseException, context: str | None) -> ErrorRecord:
        message = str(error) or type(error).__name__
        lowered = message.lower()

        for keywords, error_type, severity, retryable, user_message in MESSAGE_RULES:
            if any(keyword in lowered for keyword in keywords):
                break
        else:
            error_type = ErrorType.CLIENT
            severity = ErrorSeverity.MEDIUM
            retryable = True
            user_message = GENERIC_USER_MESSAGE

        return ErrorRecord(
            type=error_type,
            severity=severity,
            message=message,
            user_message=user_message,
            details={"exception": type(error).__name__},
            context=context,
            retryable=retryable,
        )

    @staticmethod
    def _from_custom(error: Any, context: str | None) -> ErrorRecord:
        code = _field(error, "code")
        try:
            error_type = ErrorType(_field(error, "type"))
        except ValueError:
            error_type = ErrorType.UNKNOWN
        try:
            severity = ErrorSeverity(_field(error, "severity") or ErrorSeverity.MEDIUM)
        except ValueError:
            severity = ErrorSeverity.MEDIUM

        return ErrorRecord(
            type=error_type,
            severity=severity,
            message=str(_field(error, "message") or "Unknown error"),
            user_message=str(
                _field(error, "user_message") or "An error occurred. Please try again."
            ),
            code=str(code) if code is not None else None,
            details=_field(error, "details"),
            context=context,
            retryable=_field(error, "retryable") is not False,
            retry_after=_field(error, "retry_after"),
        )

    def _log_record(self, record: ErrorRecord) -> None:
        extra = {"error_type": record.type.value, "error_context": record.context}
        if record.severity == ErrorSeverity.LOW:
            log = logger.info
        elif record.severity == ErrorSeverity.MEDIUM:
            log = logger.warning
        else:
            log = logger.error
        log("[%s] %s", record.type.value.upper(), record.message, extra=extra)

    def _report(self, record: ErrorRecord) -> None:
        if self.reporter is None:
            return
        try:
            self.reporter(record)
        except Exception as e:
            logger.warning("Failed to report error: %s", e)

    def get_error_stats(self) -> ErrorStats:
        hour_ago = dt.datetime.now(dt.UTC) - dt.timedelta(hours=1)
        by_type = {error_type: 0 for error_type in ErrorType}
        by_severity = {severity: 0 for severity in ErrorSeverity}
        recent = 0
        for record in self._log:
            by_type[record.type] += 1
            by_severity[record.severity] += 1
            if record.timestamp > hour_ago:
                recent += 1
        return ErrorStats(
            total=len(self._log), by_type=by_type, by_severity=by_severity, recent=recent
        )

    def get_recent_errors(self, limit: int = 50) -> list[ErrorRecord]:
        """Most recent records, newest first."""
        return list(islice(self._log, max(0, limit)))

    def clear_error_log(self) -> None:
        self._log.clear()

    def create_retry_function(
        self, fn: Callable[[], Awaitable[T]], context: str | None = None
    ) -> Callable[[], Awaitable[T]]:
        """Wrap a coroutine function with this handler's retry policy.

        Returns:
            Zero-argument coroutine function; each call runs a fresh retry cycle.
        """
        async def run_with_retry() -> T:
            orchestrator = RetryOrchestrator(
                self, max_retries=self.max_retries, base_delay=self.retry_delay
            )
            return await orchestrator.retry(fn, context)

        return run_with_retry
