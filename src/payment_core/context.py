"""Construction and teardown of payment core services.

A ``PaymentCore`` owns one isolated set of services (guard, ledger,
gateway, webhook handler, error handler, receipts). Tests build their own
instances; the API shares one through ``get_payment_core()``.
"""

import logging
from collections.abc import Awaitable, Callable

import httpx

from payment_core.config import PaymentSettings, get_payment_settings
from payment_core.services.error_handler import ErrorHandler, HttpErrorReporter, Reporter
from payment_core.services.lemonsqueezy_service import LemonSqueezyService
from payment_core.services.receipt_service import ReceiptService
from payment_core.services.security_guard import SecurityGuard
from payment_core.services.ssm_service import SSMService, get_ssm_service
from payment_core.services.storage import DynamoDBStore, InMemoryStore, KeyValueStore
from payment_core.services.transaction_ledger import TransactionLedger
from payment_core.services.webhook_handler import WebhookHandler

logger = logging.getLogger(__name__)


class PaymentCore:
    """Container wiring the payment services together.

    Usage:
        core = PaymentCore(PaymentSettings.from_env())
        result = await core.gateway.process_payment(form)
        core.close()
    """

    def __init__(
        self,
        settings: PaymentSettings,
        *,
        store: KeyValueStore | None = None,
        ssm: SSMService | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        reporter: Reporter | None = None,
        navigate: Callable[[str], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.settings = settings
        self._ssm = ssm
        self.store = store or self._build_store()

        self._reporter = reporter or self._build_reporter()
        self.error_handler = ErrorHandler(
            reporter=self._reporter,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_base_delay_seconds,
        )
        self.guard = SecurityGuard(
            signing_key=self._optional_secret(
                settings.token_signing_key, "security/token_signing_key"
            ),
            access_token=self._optional_secret(settings.access_token, "security/access_token"),
        )
        self.ledger = TransactionLedger(self.store)
        self.gateway = LemonSqueezyService(
            settings,
            self.ledger,
            self.guard,
            self.error_handler,
            ssm=self._ssm_for(settings.api_key),
            transport=transport,
            navigate=navigate,
            sleep=sleep,
        )
        self.webhooks = WebhookHandler(
            self.ledger,
            self.guard,
            secret=settings.webhook_secret,
            ssm=self._ssm_for(settings.webhook_secret),
            environment=settings.environment,
            signature_scheme=settings.signature_scheme,
            deduplicate_events=settings.deduplicate_webhooks,
        )
        self.receipts = ReceiptService(settings.business)

    def _ssm_for(self, explicit: str | None) -> SSMService | None:
        """SSM service when a secret is not configured explicitly."""
        if explicit is not None or not self.settings.ssm_enabled:
            return None
        if self._ssm is None:
            self._ssm = get_ssm_service()
        return self._ssm

    def _optional_secret(self, explicit: str | None, name: str) -> str | None:
        ssm = self._ssm_for(explicit)
        if ssm is None:
            return explicit
        return ssm.get_optional_secret(self.settings.environment, name)

    def _build_store(self) -> KeyValueStore:
        if self.settings.storage_backend == "dynamodb":
            logger.info("Using DynamoDB ledger storage: %s", self.settings.table_name)
            return DynamoDBStore(self.settings.table_name)
        return InMemoryStore()

    def _build_reporter(self) -> Reporter | None:
        if self.settings.error_report_url:
            return HttpErrorReporter(
                self.settings.error_report_url,
                timeout=self.settings.request_timeout_seconds,
            )
        return None

    def close(self) -> None:
        """Release resources held by the services."""
        if isinstance(self._reporter, HttpErrorReporter):
            self._reporter.close()


# Module-level instance shared by the API
_payment_core_instance: PaymentCore | None = None


def get_payment_core() -> PaymentCore:
    """Get or create the shared PaymentCore built from environment settings."""
    global _payment_core_instance
    if _payment_core_instance is None:
        _payment_core_instance = PaymentCore(get_payment_settings())
    return _payment_core_instance


def reset_payment_core() -> None:
    """Tear down the shared instance (for testing only)."""
    global _payment_core_instance
    if _payment_core_instance is not None:
        _payment_core_instance.close()
    _payment_core_instance = None
    get_payment_settings.cache_clear()
