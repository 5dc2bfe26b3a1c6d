"""Bounded retry driven by error classification."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from payment_core.models.errors import ErrorRecord

if TYPE_CHECKING:
    from payment_core.services.error_handler import ErrorHandler

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryOrchestrator:
    """Runs an async operation until it succeeds, fails permanently or the
    attempt budget is spent.

    Each failure is classified by the ErrorHandler. Non-retryable failures
    are re-raised immediately. Otherwise the orchestrator waits the
    server-advised ``retry_after`` if present, else ``base_delay * attempt``.

    The attempt counter is kept across calls so a UI can show
    "Retry attempt N of M"; a successful call clears it and ``reset()``
    clears it explicitly.
    """

    def __init__(
        self,
        error_handler: "ErrorHandler",
        *,
        max_retries: int = 3,
        base_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_retry: Callable[[int, ErrorRecord, float], None] | None = None,
        on_max_retries_reached: Callable[[ErrorRecord], None] | None = None,
    ) -> None:
        self.error_handler = error_handler
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep
        self.on_retry = on_retry
        self.on_max_retries_reached = on_max_retries_reached

        self.attempt = 0
        self.is_retrying = False
        self.last_error: ErrorRecord | None = None

    @property
    def status_message(self) -> str:
        return f"Retry attempt {self.attempt} of {self.max_retries}"

    def can_retry(self, record: ErrorRecord | None = None) -> bool:
        """Whether a retry affordance should be offered for a failure."""
        record = record or self.last_error
        if record is None:
            return False
        return record.retryable and self.attempt < self.max_retries

    def reset(self) -> None:
        self.attempt = 0
        self.is_retrying = False
        self.last_error = None

    def delay_for(self, record: ErrorRecord) -> float:
        if record.retry_after is not None:
            return record.retry_after
        return self.base_delay * self.attempt

    async def retry(self, fn: Callable[[], Awaitable[T]], context: str | None = None) -> T:
        """Run ``fn`` with retries.

        Args:
            fn: Zero-argument coroutine function.
            context: Error context passed to the classifier.

        Returns:
            The value returned by ``fn``.

        Raises:
            Exception: The original exception of the last failed attempt.
        """
        while True:
            self.attempt += 1
            try:
                result = await fn()
            except Exception as e:
                record = self.error_handler.handle_error(e, context)
                self.last_error = record

                if not record.retryable:
                    self.is_retrying = False
                    raise

                if self.attempt >= self.max_retries:
                    self.is_retrying = False
                    logger.error(
                        "Max retry attempts (%d) reached for %s",
                        self.max_retries,
                        context or "operation",
                    )
                    if self.on_max_retries_reached:
                        self.on_max_retries_reached(record)
                    raise

                delay = self.delay_for(record)
                self.is_retrying = True
                logger.warning(
                    "Attempt %d/%d failed for %s: %s. Retrying in %.2fs",
                    self.attempt,
                    self.max_retries,
                    context or "operation",
                    record.message,
                    delay,
                )
                if self.on_retry:
                    self.on_retry(self.attempt, record, delay)
                await self._sleep(delay)
            else:
                self.attempt = 0
                self.is_retrying = False
                self.last_error = None
                return result
