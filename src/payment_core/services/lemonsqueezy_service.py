"""Lemon Squeezy checkout gateway.

Creates hosted checkouts through the Lemon Squeezy JSON:API and drives the
client-side payment flow: security checks, validation, a pending ledger
entry, checkout creation and hand-off of the checkout URL to the caller.
"""

import email.utils
import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from payment_core.config import PaymentSettings
from payment_core.models.enums import Currency, TransactionStatus
from payment_core.models.errors import (
    ErrorCode,
    ErrorRecord,
    LemonSqueezyErrorType,
    LemonSqueezyServiceError,
    PaymentCoreError,
)
from payment_core.models.payment import FieldError, PaymentFormData, PaymentResult
from payment_core.models.transaction import CustomerInfo, Transaction
from payment_core.services.error_handler import ErrorHandler
from payment_core.services.retry import RetryOrchestrator
from payment_core.services.security_guard import SecurityGuard
from payment_core.services.ssm_service import SSMService, SSMServiceError
from payment_core.services.transaction_ledger import TransactionLedger
from payment_core.utils.amount import amount_to_minor_units, decimal_places
from payment_core.utils.logging import log_payment_operation

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SUPPORTED_CURRENCIES = frozenset(c.value for c in Currency)
JSON_API_MEDIA_TYPE = "application/vnd.api+json"
DEFAULT_RATE_LIMIT_IDENTIFIER = "checkout-form"

MIN_FORM_AMOUNT = 1
MAX_FORM_AMOUNT = 10_000
MAX_AMOUNT_DECIMALS = 2
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100


def currency_code(currency: Currency | str) -> str:
    """Plain currency code for an enum member or string."""
    if isinstance(currency, Currency):
        return currency.value
    return str(currency).upper()


def to_processor_error(error: BaseException) -> LemonSqueezyServiceError:
    """Map an untyped failure onto the processor error taxonomy by its message."""
    if isinstance(error, LemonSqueezyServiceError):
        return error

    message = str(error) or type(error).__name__
    lowered = message.lower()
    if "fetch" in lowered or "network" in lowered:
        error_type = LemonSqueezyErrorType.NETWORK_ERROR
    elif "HTTP" in message:
        error_type = LemonSqueezyErrorType.API_ERROR
    elif "amount" in lowered:
        error_type = LemonSqueezyErrorType.INVALID_AMOUNT
    else:
        error_type = LemonSqueezyErrorType.API_ERROR
    return LemonSqueezyServiceError(error_type, message)


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        pass
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, parsed.timestamp() - time.time())


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            detail = errors[0].get("detail")
            if detail:
                return str(detail)
    return f"HTTP {response.status_code}: {response.reason_phrase}"


class LemonSqueezyService:
    """Payment gateway in front of Lemon Squeezy.

    Usage:
        gateway = LemonSqueezyService(settings, ledger, guard, error_handler)
        result = await gateway.process_payment(form)
        if result.success:
            redirect(result.checkout_url)
    """

    def __init__(
        self,
        settings: PaymentSettings,
        ledger: TransactionLedger,
        guard: SecurityGuard,
        error_handler: ErrorHandler,
        *,
        api_key: str | None = None,
        ssm: SSMService | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        navigate: Callable[[str], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the gateway.

        Args:
            settings: Payment settings (base URL, store, redirect URLs, timeouts).
            ledger: Ledger receiving pending/failed transactions.
            guard: Security guard for rate limiting and risk checks.
            error_handler: Classifier for checkout failures.
            api_key: Explicit API key; otherwise settings, then SSM.
            ssm: SSM service used to resolve the API key lazily.
            transport: Optional httpx transport (tests use httpx.MockTransport).
            navigate: Callback receiving the checkout URL on success.
            sleep: Back-off sleep used between checkout retries.
            clock: Time source returning epoch seconds.
        """
        self._settings = settings
        self._ledger = ledger
        self._guard = guard
        self._error_handler = error_handler
        self._api_key = api_key or settings.api_key
        self._ssm = ssm
        self._transport = transport
        self.navigate = navigate
        self._sleep = sleep
        self._clock = clock

    def _get_api_key(self) -> str:
        """Resolve the API key (lazy).

        Raises:
            PaymentCoreError: If no key is configured.
        """
        if self._api_key is None:
            if self._ssm is None:
                raise PaymentCoreError(
                    ErrorCode.CONFIGURATION_MISSING, {"missing": "lemonsqueezy/api_key"}
                )
            try:
                self._api_key = self._ssm.get_secret(
                    self._settings.environment, "lemonsqueezy/api_key"
                )
            except SSMServiceError as e:
                raise PaymentCoreError(
                    ErrorCode.CONFIGURATION_MISSING, {"missing": e.parameter}
                ) from e
        return self._api_key

    def _new_client(self) -> httpx.AsyncClient:
        # Not shared across calls: requests may run on different event loops
        return httpx.AsyncClient(
            base_url=self._settings.api_base_url,
            timeout=self._settings.request_timeout_seconds,
            transport=self._transport,
        )

    def _headers(self, *, with_body: bool = False) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._get_api_key()}",
            "Accept": JSON_API_MEDIA_TYPE,
        }
        if with_body:
            headers["Content-Type"] = JSON_API_MEDIA_TYPE
        return headers

    # Processor API

    def build_checkout_payload(
        self, form_data: PaymentFormData, transaction_id: str | None = None
    ) -> dict[str, Any]:
        """JSON:API body for ``POST /checkouts``."""
        currency = currency_code(form_data.currency)
        custom: dict[str, Any] = {
            "amount_minor_units": amount_to_minor_units(form_data.amount),
            "currency": currency,
        }
        if transaction_id:
            custom["transaction_id"] = transaction_id
        if form_data.customer_email or form_data.customer_name:
            custom["customer_email"] = form_data.customer_email or ""
            custom["customer_name"] = form_data.customer_name or ""

        attributes: dict[str, Any] = {
            "custom_price": amount_to_minor_units(form_data.amount),
            "checkout_data": {"custom": custom},
            "product_options": {
                "name": "Custom Payment",
                "description": form_data.description
                or f"Payment of {form_data.amount} {currency}",
                "redirect_url": self._settings.success_url,
            },
            "checkout_options": {"embed": False, "media": False, "logo": False},
        }
        if form_data.customer_email:
            attributes["checkout_data"]["email"] = form_data.customer_email
        if form_data.customer_name:
            attributes["checkout_data"]["name"] = form_data.customer_name

        relationships: dict[str, Any] = {
            "store": {"data": {"type": "stores", "id": self._settings.store_id}},
        }
        if self._settings.variant_id:
            relationships["variant"] = {
                "data": {"type": "variants", "id": self._settings.variant_id}
            }

        return {
            "data": {
                "type": "checkouts",
                "attributes": attributes,
                "relationships": relationships,
            }
        }

    async def create_checkout(
        self, form_data: PaymentFormData, transaction_id: str | None = None
    ) -> str:
        """Create a hosted checkout.

        Args:
            form_data: Validated payment form.
            transaction_id: Correlation ID echoed back in webhooks.

        Returns:
            Checkout URL.

        Raises:
            LemonSqueezyServiceError: On network failure or a non-2xx response.
            PaymentCoreError: If the response carries no checkout URL or the
                API key is not configured.
        """
        payload = self.build_checkout_payload(form_data, transaction_id)
        headers = self._headers(with_body=True)

        try:
            async with self._new_client() as client:
                response = await client.post("/checkouts", json=payload, headers=headers)
        except httpx.TransportError as e:
            raise LemonSqueezyServiceError(
                LemonSqueezyErrorType.NETWORK_ERROR, f"Network request failed: {e}"
            ) from e

        if response.is_error:
            status = response.status_code
            retryable = status == 429 or status >= 500
            raise LemonSqueezyServiceError(
                LemonSqueezyErrorType.API_ERROR,
                _error_detail(response),
                status_code=status,
                retryable=retryable,
                retry_after=_retry_after_seconds(response) if status == 429 else None,
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        url = ((body.get("data") or {}).get("attributes") or {}).get("url")
        if not url:
            raise PaymentCoreError(ErrorCode.CHECKOUT_URL_MISSING)

        log_payment_operation(
            logger,
            "create_checkout",
            transaction_id=transaction_id,
            amount=form_data.amount,
            currency=currency_code(form_data.currency),
            checkout_id=(body.get("data") or {}).get("id"),
        )
        return str(url)

    async def get_checkout_status(self, checkout_id: str) -> dict[str, Any]:
        """Fetch a checkout resource.

        Raises:
            LemonSqueezyServiceError: On network failure or a non-2xx response.
        """
        try:
            async with self._new_client() as client:
                response = await client.get(
                    f"/checkouts/{checkout_id}", headers=self._headers()
                )
        except httpx.TransportError as e:
            raise LemonSqueezyServiceError(
                LemonSqueezyErrorType.NETWORK_ERROR, f"Network request failed: {e}"
            ) from e

        if response.is_error:
            raise LemonSqueezyServiceError(
                LemonSqueezyErrorType.API_ERROR,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
                retryable=response.status_code == 429 or response.status_code >= 500,
            )
        result: dict[str, Any] = response.json()
        return result

    # Payment flow

    @staticmethod
    def validate_payment_form(form_data: PaymentFormData) -> list[FieldError]:
        """Field-level validation for form rendering."""
        errors: list[FieldError] = []

        amount = form_data.amount
        if amount < MIN_FORM_AMOUNT:
            errors.append(
                FieldError(field="amount", message=f"Amount must be at least {MIN_FORM_AMOUNT}")
            )
        elif amount > MAX_FORM_AMOUNT:
            errors.append(
                FieldError(field="amount", message=f"Amount cannot exceed {MAX_FORM_AMOUNT}")
            )
        if decimal_places(amount) > MAX_AMOUNT_DECIMALS:
            errors.append(
                FieldError(
                    field="amount",
                    message=f"Amount can have at most {MAX_AMOUNT_DECIMALS} decimal places",
                )
            )

        if currency_code(form_data.currency) not in SUPPORTED_CURRENCIES:
            errors.append(FieldError(field="currency", message="Please select a valid currency"))

        if form_data.customer_email and not EMAIL_PATTERN.match(form_data.customer_email):
            errors.append(
                FieldError(field="customer_email", message="Please enter a valid email address")
            )

        name = form_data.customer_name.strip()
        if name and len(name) < MIN_NAME_LENGTH:
            errors.append(
                FieldError(
                    field="customer_name",
                    message=f"Name must be at least {MIN_NAME_LENGTH} characters",
                )
            )
        elif len(name) > MAX_NAME_LENGTH:
            errors.append(
                FieldError(
                    field="customer_name",
                    message=f"Name cannot exceed {MAX_NAME_LENGTH} characters",
                )
            )

        return errors

    @staticmethod
    def _check_payment_data(form_data: PaymentFormData) -> None:
        if form_data.amount is None or form_data.amount <= 0:
            raise PaymentCoreError(ErrorCode.INVALID_AMOUNT, {"amount": form_data.amount})
        currency = currency_code(form_data.currency)
        if currency not in SUPPORTED_CURRENCIES:
            raise PaymentCoreError(ErrorCode.UNSUPPORTED_CURRENCY, {"currency": currency})
        if form_data.customer_email and not EMAIL_PATTERN.match(form_data.customer_email):
            raise PaymentCoreError(
                ErrorCode.INVALID_PAYMENT_DATA, {"field": "customer_email"}
            )

    def _failure(
        self,
        error: PaymentCoreError,
        context: str,
        transaction_id: str | None = None,
    ) -> PaymentResult:
        record = self._error_handler.handle_error(error, context)
        return self._failure_from_record(record, transaction_id)

    @staticmethod
    def _failure_from_record(
        record: ErrorRecord, transaction_id: str | None = None
    ) -> PaymentResult:
        return PaymentResult(
            success=False,
            transaction_id=transaction_id,
            error=record.message,
            error_record=record,
        )

    def _checkout_orchestrator(self) -> RetryOrchestrator:
        kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return RetryOrchestrator(
            self._error_handler,
            max_retries=self._settings.max_retries if self._settings.retry_checkout else 1,
            base_delay=self._settings.retry_base_delay_seconds,
            **kwargs,
        )

    async def process_payment(
        self,
        form_data: PaymentFormData,
        identifier: str = DEFAULT_RATE_LIMIT_IDENTIFIER,
    ) -> PaymentResult:
        """Run the checkout flow for a submitted payment form.

        Steps: rate limit, normalize, validate, risk check, pending ledger
        entry, checkout creation (retried when transient), navigation.

        Args:
            form_data: Customer-submitted form.
            identifier: Rate-limit key for the caller.

        Returns:
            PaymentResult. Failures carry a classified ErrorRecord; nothing
            is raised for expected failures.
        """
        if self._guard.is_blocked(identifier):
            return self._failure(
                PaymentCoreError(ErrorCode.RATE_LIMITED, {"identifier": identifier}),
                "payment_rate_limit",
            )
        rate = self._guard.check_rate_limit(identifier)
        if not rate.allowed:
            return self._failure(
                PaymentCoreError(
                    ErrorCode.RATE_LIMITED,
                    {"identifier": identifier},
                    retry_after=max(0.0, rate.reset_time - self._clock()),
                ),
                "payment_rate_limit",
            )

        form = form_data.model_copy(
            update={
                "customer_name": self._guard.normalize_input(form_data.customer_name),
                "customer_email": self._guard.normalize_input(form_data.customer_email),
            }
        )

        try:
            self._check_payment_data(form)
        except PaymentCoreError as e:
            return self._failure(e, "payment_validation")

        currency = currency_code(form.currency)
        risk = self._guard.validate_payment_amount(form.amount, currency)
        if not risk.valid:
            self._guard.log_suspicious_activity(
                identifier,
                "high_risk_payment",
                {"amount": form.amount, "currency": currency, "reasons": risk.reasons},
            )
            return self._failure(
                PaymentCoreError(
                    ErrorCode.HIGH_RISK_PAYMENT, {"reasons": risk.reasons}
                ),
                "payment_risk",
            )

        transaction_id = f"pending-{int(self._clock() * 1000)}"
        self._ledger.log_transaction(
            Transaction(
                id=transaction_id,
                amount=form.amount,
                currency=currency,
                status=TransactionStatus.PENDING,
                customer_info=CustomerInfo(
                    email=form.customer_email or None, name=form.customer_name or None
                ),
            )
        )

        async def attempt_checkout() -> str:
            try:
                return await self.create_checkout(form, transaction_id)
            except PaymentCoreError:
                raise
            except Exception as e:
                raise to_processor_error(e) from e

        orchestrator = self._checkout_orchestrator()
        try:
            checkout_url = await orchestrator.retry(attempt_checkout, "checkout_creation")
        except PaymentCoreError:
            record = orchestrator.last_error
            self._ledger.update_transaction_status(transaction_id, TransactionStatus.FAILED)
            log_payment_operation(
                logger,
                "process_payment",
                transaction_id=transaction_id,
                amount=form.amount,
                currency=currency,
                error=record.message if record else "checkout failed",
            )
            if record is None:
                record = self._error_handler.handle_error(
                    PaymentCoreError(ErrorCode.CHECKOUT_FAILED), "checkout_creation"
                )
            return self._failure_from_record(record, transaction_id)

        if self.navigate is not None:
            self.navigate(checkout_url)

        log_payment_operation(
            logger,
            "process_payment",
            transaction_id=transaction_id,
            amount=form.amount,
            currency=currency,
            status=TransactionStatus.PENDING.value,
        )
        return PaymentResult(
            success=True, transaction_id=transaction_id, checkout_url=checkout_url
        )
