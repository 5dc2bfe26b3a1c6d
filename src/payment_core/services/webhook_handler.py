"""Webhook handler for Lemon Squeezy events.

Verifies the delivery signature, parses the envelope and reconciles the
ledger. Business logic lives here, separate from HTTP routing, so it can be
unit tested without a web server.
"""

import datetime as dt
import hashlib
import hmac
import json
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from payment_core.models.enums import SignatureScheme, TransactionStatus, WebhookEventName
from payment_core.models.transaction import CustomerInfo, Transaction
from payment_core.models.webhook import (
    LemonSqueezyWebhookPayload,
    WebhookEvent,
    WebhookResult,
    WebhookStats,
)
from payment_core.services.security_guard import SecurityGuard
from payment_core.services.ssm_service import SSMService, SSMServiceError
from payment_core.services.transaction_ledger import TransactionLedger
from payment_core.utils.logging import get_logger, log_webhook_event

logger = get_logger(__name__)

SUSPICIOUS_WEBHOOK_AMOUNT = 10_000
MAX_REMEMBERED_EVENTS = 1000

EventCallback = Callable[[WebhookEvent], None]
Notifier = Callable[[str, WebhookEvent], None]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def log_notifier(kind: str, event: WebhookEvent) -> None:
    """Default payment notification: a structured log line."""
    logger.info(
        "Payment %s notification: order=%s amount=%.2f currency=%s",
        kind,
        event.resource_id,
        event.amount,
        event.currency,
    )


class WebhookHandler:
    """Handler for Lemon Squeezy webhook deliveries.

    Re-deliveries are processed again unless ``deduplicate_events`` is set,
    in which case events are keyed by ``meta.webhook_id`` (or the SHA-256 of
    the raw body) and repeats are acknowledged without side effects.
    """

    def __init__(
        self,
        ledger: TransactionLedger,
        guard: SecurityGuard | None = None,
        *,
        secret: str | None = None,
        ssm: SSMService | None = None,
        environment: str = "dev",
        signature_scheme: SignatureScheme = SignatureScheme.HMAC_SHA256,
        deduplicate_events: bool = False,
        notifier: Notifier | None = log_notifier,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        """Initialize webhook handler.

        Args:
            ledger: Ledger to reconcile.
            guard: Receives suspicious-activity records for high amounts.
            secret: Webhook signing secret; resolved from SSM when omitted.
            ssm: SSM service used to resolve the secret.
            environment: Environment name for SSM paths.
            signature_scheme: How the X-Signature header is checked.
            deduplicate_events: Acknowledge repeated deliveries without reprocessing.
            notifier: Best-effort notification hook for completed/refunded payments.
            clock: Time source.
        """
        self._ledger = ledger
        self._guard = guard
        self._secret = secret
        self._ssm = ssm
        self._environment = environment
        self.signature_scheme = signature_scheme
        self.deduplicate_events = deduplicate_events
        self._notifier = notifier
        self._clock = clock

        self.on_payment_completed: EventCallback | None = None
        self.on_payment_refunded: EventCallback | None = None
        self.on_suspicious_activity: EventCallback | None = None

        self._seen_events: OrderedDict[str, None] = OrderedDict()
        self._stats = WebhookStats()

    def configure(
        self,
        *,
        on_payment_completed: EventCallback | None = None,
        on_payment_refunded: EventCallback | None = None,
        on_suspicious_activity: EventCallback | None = None,
    ) -> None:
        """Set event callbacks. Callbacks not given keep their current value."""
        if on_payment_completed is not None:
            self.on_payment_completed = on_payment_completed
        if on_payment_refunded is not None:
            self.on_payment_refunded = on_payment_refunded
        if on_suspicious_activity is not None:
            self.on_suspicious_activity = on_suspicious_activity

    # Signature

    def _get_secret(self) -> str | None:
        if self._secret is None and self._ssm is not None:
            try:
                self._secret = self._ssm.get_secret(
                    self._environment, "lemonsqueezy/webhook_secret"
                )
            except SSMServiceError as e:
                logger.error("Webhook secret unavailable: %s", e)
        return self._secret

    def verify_signature(self, payload: str | bytes, signature: str | None) -> bool:
        """Check the X-Signature header against the raw request body.

        Args:
            payload: Raw request body.
            signature: X-Signature header value.

        Returns:
            True if the signature matches.
        """
        secret = self._get_secret()
        if not signature or not secret:
            return False

        if self.signature_scheme == SignatureScheme.SHARED_SECRET:
            return hmac.compare_digest(signature.encode("utf-8"), secret.encode("utf-8"))

        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    # Dispatch

    def handle_webhook(self, payload: str | bytes, signature: str | None) -> WebhookResult:
        """Verify, parse and apply one webhook delivery.

        Args:
            payload: Raw request body.
            signature: X-Signature header value.

        Returns:
            WebhookResult; success=False for a bad signature or malformed payload.
        """
        self._stats.total_events += 1

        if not self.verify_signature(payload, signature):
            self._stats.rejected_signatures += 1
            logger.warning("Webhook signature verification failed")
            return WebhookResult(success=False, message="Invalid signature")

        try:
            envelope = LemonSqueezyWebhookPayload.model_validate(json.loads(payload))
        except (ValueError, ValidationError) as e:
            logger.error("Malformed webhook payload: %s", e)
            return WebhookResult(success=False, message="Malformed webhook payload")

        event = WebhookEvent.from_payload(envelope)
        self._stats.events_by_type[event.event_name] = (
            self._stats.events_by_type.get(event.event_name, 0) + 1
        )
        self._stats.last_event_time = self._clock()

        if self.deduplicate_events:
            key = event.webhook_id or hashlib.sha256(
                payload.encode("utf-8") if isinstance(payload, str) else payload
            ).hexdigest()
            if key in self._seen_events:
                self._stats.duplicates += 1
                log_webhook_event(logger, event.event_name, event.resource_id, result="duplicate")
                return WebhookResult(
                    success=True,
                    message="Duplicate webhook ignored",
                    event_name=event.event_name,
                    duplicate=True,
                )
            self._remember(key)

        transaction_id = self._dispatch(event)
        return WebhookResult(
            success=True,
            message="Webhook processed successfully",
            event_name=event.event_name,
            transaction_id=transaction_id,
        )

    def _remember(self, key: str) -> None:
        self._seen_events[key] = None
        while len(self._seen_events) > MAX_REMEMBERED_EVENTS:
            self._seen_events.popitem(last=False)

    def _dispatch(self, event: WebhookEvent) -> str | None:
        handlers: dict[str, Callable[[WebhookEvent], str | None]] = {
            WebhookEventName.ORDER_CREATED.value: self._handle_order_created,
            WebhookEventName.ORDER_REFUNDED.value: self._handle_order_refunded,
            WebhookEventName.SUBSCRIPTION_CREATED.value: self._handle_subscription_created,
            WebhookEventName.SUBSCRIPTION_UPDATED.value: self._handle_subscription_logged,
            WebhookEventName.SUBSCRIPTION_CANCELLED.value: self._handle_subscription_logged,
        }
        handler = handlers.get(event.event_name)
        if handler is None:
            log_webhook_event(logger, event.event_name, event.resource_id, result="ignored")
            return None
        return handler(event)

    def _fire(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error("Webhook callback %s failed: %s", getattr(callback, "__name__", callback), e)

    def _handle_order_created(self, event: WebhookEvent) -> str | None:
        now = self._clock()
        transaction_id = event.transaction_id

        if transaction_id and self._ledger.get_transaction_by_id(transaction_id):
            self._ledger.update_transaction_status(
                transaction_id, TransactionStatus.COMPLETED, now
            )
        else:
            transaction_id = self._log_completed(event, f"lemon_{event.resource_id}")

        if transaction_id is not None:
            log_webhook_event(
                logger,
                event.event_name,
                event.resource_id,
                transaction_id=transaction_id,
                result="success",
            )

        if event.amount > SUSPICIOUS_WEBHOOK_AMOUNT:
            if self._guard is not None:
                self._guard.log_suspicious_activity(
                    f"order:{event.resource_id}",
                    "high_amount_webhook",
                    {"amount": event.amount, "currency": event.currency},
                )
            self._fire(self.on_suspicious_activity, event)

        self._fire(self.on_payment_completed, event)
        self._fire(self._notifier, "completed", event)
        return transaction_id

    def _handle_order_refunded(self, event: WebhookEvent) -> str | None:
        candidates = [f"lemon_{event.resource_id}"]
        if event.transaction_id:
            candidates.append(event.transaction_id)

        transaction_id = next(
            (tid for tid in candidates if self._ledger.get_transaction_by_id(tid)), None
        )
        if transaction_id is None:
            log_webhook_event(
                logger,
                event.event_name,
                event.resource_id,
                result="ignored",
                reason="transaction not found",
            )
        else:
            self._ledger.record_refund(transaction_id, refunded_at=self._clock())
            log_webhook_event(
                logger,
                event.event_name,
                event.resource_id,
                transaction_id=transaction_id,
                result="success",
            )

        self._fire(self.on_payment_refunded, event)
        self._fire(self._notifier, "refunded", event)
        return transaction_id

    def _log_completed(
        self, event: WebhookEvent, transaction_id: str, payment_method_id: str = "lemon-squeezy"
    ) -> str | None:
        """Record a completed transaction for an event with no ledger entry yet.

        Returns:
            The new transaction ID, or None if the event carries no positive total.
        """
        if event.amount <= 0:
            log_webhook_event(
                logger,
                event.event_name,
                event.resource_id,
                result="ignored",
                reason="no positive total",
            )
            return None
        now = self._clock()
        self._ledger.log_transaction(
            Transaction(
                id=transaction_id,
                amount=event.amount,
                currency=event.currency,
                status=TransactionStatus.COMPLETED,
                created_at=now,
                completed_at=now,
                payment_method_id=payment_method_id,
                customer_info=CustomerInfo(email=event.customer_email),
            )
        )
        return transaction_id

    def _handle_subscription_created(self, event: WebhookEvent) -> str | None:
        transaction_id = self._log_completed(
            event, f"sub_{event.resource_id}", "lemon-squeezy-subscription"
        )
        if transaction_id is None:
            return None
        log_webhook_event(
            logger,
            event.event_name,
            event.resource_id,
            transaction_id=transaction_id,
            result="success",
        )
        return transaction_id

    def _handle_subscription_logged(self, event: WebhookEvent) -> str | None:
        log_webhook_event(logger, event.event_name, event.resource_id, result="success")
        return None

    def get_webhook_stats(self) -> WebhookStats:
        return self._stats.model_copy(deep=True)
