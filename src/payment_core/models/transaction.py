"""Transaction model for ledger records."""

import datetime as dt

from pydantic import BaseModel, Field, model_validator

from .enums import TransactionStatus

TIMESTAMPED_STATUSES = frozenset({TransactionStatus.COMPLETED, TransactionStatus.REFUNDED})


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class CustomerInfo(BaseModel):
    """Customer identity attached to a transaction. Shape only, never validated."""

    email: str | None = None
    name: str | None = None
    id: str | None = None


class Transaction(BaseModel):
    """A payment attempt or completed payment recorded in the ledger.

    Amounts are stored in major units (19.99), not minor units.
    ``completed_at`` is set only for completed and refunded transactions.
    """

    id: str = Field(..., description="Unique transaction ID")
    amount: float = Field(..., gt=0, description="Amount in major units")
    currency: str = Field(..., description="Currency code (ILS, USD, EUR)")
    status: TransactionStatus = Field(..., description="Transaction status")
    created_at: dt.datetime = Field(
        default_factory=_utcnow, description="Creation timestamp"
    )
    completed_at: dt.datetime | None = Field(
        default=None, description="Completion or refund timestamp"
    )
    payment_method_id: str = Field(
        default="lemon-squeezy", description="Processor/method used"
    )
    customer_info: CustomerInfo | None = Field(
        default=None, description="Optional customer identity"
    )
    receipt_url: str | None = Field(default=None, description="Receipt URL if issued")
    refund_id: str | None = Field(default=None, description="Processor refund ID")

    @model_validator(mode="after")
    def check_completed_at(self) -> "Transaction":
        """Completed and refunded records carry ``completed_at``; others must not.

        A completed or refunded record without one is stamped with
        ``created_at``.
        """
        if self.status in TIMESTAMPED_STATUSES:
            if self.completed_at is None:
                self.completed_at = self.created_at
        elif self.completed_at is not None:
            raise ValueError(
                f"completed_at is only valid for completed or refunded, not {self.status.value}"
            )
        return self

    @property
    def customer_key(self) -> str:
        """Grouping key used by fraud heuristics: email, else id, else 'unknown'."""
        if self.customer_info:
            return self.customer_info.email or self.customer_info.id or "unknown"
        return "unknown"


class TransactionFilter(BaseModel):
    """Conjunctive filter over ledger transactions."""

    status: TransactionStatus | None = None
    date_from: dt.datetime | None = None
    date_to: dt.datetime | None = None
    min_amount: float | None = None
    max_amount: float | None = None


class TransactionStats(BaseModel):
    """Aggregate ledger statistics."""

    total: int = 0
    completed: int = 0
    pending: int = 0
    failed: int = 0
    total_amount: float = 0
    average_amount: float = 0


class StatusAuditEntry(BaseModel):
    """Record of a status change that left a terminal state."""

    transaction_id: str
    previous_status: TransactionStatus
    new_status: TransactionStatus
    reason: str
    actor: str | None = None
    timestamp: dt.datetime = Field(default_factory=_utcnow)
