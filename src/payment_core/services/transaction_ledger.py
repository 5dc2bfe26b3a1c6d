"""Persisted transaction ledger.

The ledger is a single JSON array stored under one key of a KeyValueStore,
most recent transaction first, capped at ``MAX_TRANSACTIONS`` entries.
Read and write failures are logged and degrade to safe defaults; a failed
read never leads to an overwrite. Ledger operations never raise into the
checkout flow.
"""

import csv
import datetime as dt
import io
import json
import logging
from collections import deque
from collections.abc import Callable

from pydantic import ValidationError

from payment_core.models.enums import ExportFormat, TransactionStatus
from payment_core.models.transaction import (
    TIMESTAMPED_STATUSES,
    StatusAuditEntry,
    Transaction,
    TransactionFilter,
    TransactionStats,
)
from payment_core.services.storage import (
    KeyValueStore,
    StorageError,
    StorageQuotaExceededError,
)
from payment_core.utils.logging import log_payment_operation

logger = logging.getLogger(__name__)

STORAGE_KEY = "payment_transactions"
MAX_TRANSACTIONS = 1000
SUSPICIOUS_WINDOW = dt.timedelta(hours=1)
SUSPICIOUS_FAILED_COUNT = 3
SUSPICIOUS_AMOUNT = 1000

CSV_HEADERS = [
    "ID",
    "Amount",
    "Currency",
    "Status",
    "Created At",
    "Completed At",
    "Payment Method",
    "Customer Email",
    "Customer Name",
    "Receipt URL",
]

TERMINAL_STATUSES = frozenset({TransactionStatus.FAILED, TransactionStatus.REFUNDED})


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value


def _format_number(value: float) -> str:
    text = format(value, "f")
    return text.rstrip("0").rstrip(".") if "." in text else text


class TransactionLedger:
    """Append-mostly store of payment transactions.

    State machine: pending -> completed | failed, completed -> refunded.
    Moving out of failed or refunded is allowed but recorded in the status
    audit log (see ``override_transaction_status``).
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_transactions: int = MAX_TRANSACTIONS,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self._store = store
        self.max_transactions = max_transactions
        self._clock = clock
        self._audit_log: deque[StatusAuditEntry] = deque(maxlen=max_transactions)

    # Persistence

    def _load(self) -> list[Transaction]:
        try:
            raw = self._store.get(STORAGE_KEY)
        except StorageError as e:
            logger.error("Failed to read transactions: %s", e)
            return []
        return self._parse(raw)

    def _load_for_write(self) -> list[Transaction] | None:
        """Like _load, but a read failure yields None so nothing is overwritten."""
        try:
            raw = self._store.get(STORAGE_KEY)
        except StorageError as e:
            logger.error("Failed to read transactions, not writing: %s", e)
            return None
        return self._parse(raw)

    @staticmethod
    def _parse(raw: str | None) -> list[Transaction]:
        if not raw:
            return []

        try:
            items = json.loads(raw)
        except ValueError as e:
            logger.error("Failed to parse stored transactions: %s", e)
            return []
        if not isinstance(items, list):
            logger.error("Stored transactions are not a list, ignoring")
            return []

        transactions: list[Transaction] = []
        for item in items:
            try:
                transactions.append(Transaction.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed stored transaction: %s", e)
        return transactions

    @staticmethod
    def _dump(transactions: list[Transaction]) -> str:
        return json.dumps([t.model_dump(mode="json") for t in transactions])

    def _save(self, transactions: list[Transaction]) -> bool:
        try:
            self._store.set(STORAGE_KEY, self._dump(transactions))
            return True
        except StorageQuotaExceededError:
            keep = self.max_transactions // 2
            logger.warning("Storage quota exceeded, keeping the %d most recent transactions", keep)
            try:
                self._store.set(STORAGE_KEY, self._dump(transactions[:keep]))
                return True
            except StorageError as e:
                logger.error("Failed to save trimmed transactions: %s", e)
                return False
        except StorageError as e:
            logger.error("Failed to save transactions: %s", e)
            return False

    # Writes

    def log_transaction(self, transaction: Transaction) -> bool:
        """Insert a transaction at the head of the ledger.

        Duplicate IDs are tolerated; lookups return the most recent one.

        Returns:
            True if the ledger was persisted. False, with nothing written,
            if the stored ledger could not be read.
        """
        transactions = self._load_for_write()
        if transactions is None:
            return False
        transactions.insert(0, transaction)
        del transactions[self.max_transactions :]
        saved = self._save(transactions)
        log_payment_operation(
            logger,
            "log_transaction",
            transaction_id=transaction.id,
            amount=transaction.amount,
            currency=transaction.currency,
            status=transaction.status.value,
        )
        return saved

    def _find_index(self, transactions: list[Transaction], transaction_id: str) -> int:
        for index, transaction in enumerate(transactions):
            if transaction.id == transaction_id:
                return index
        return -1

    def _apply_status(
        self,
        transaction: Transaction,
        status: TransactionStatus,
        completed_at: dt.datetime | None,
        **changes,
    ) -> Transaction:
        if status in TIMESTAMPED_STATUSES:
            timestamp = completed_at or self._clock()
        else:
            timestamp = None
        return transaction.model_copy(
            update={"status": status, "completed_at": timestamp, **changes}
        )

    def _transition(
        self,
        transaction_id: str,
        status: TransactionStatus,
        completed_at: dt.datetime | None = None,
        *,
        reason: str | None = None,
        actor: str | None = None,
        **changes,
    ) -> bool:
        status = TransactionStatus(status)
        transactions = self._load_for_write()
        if transactions is None:
            return False
        index = self._find_index(transactions, transaction_id)
        if index == -1:
            logger.warning("Transaction not found: %s", transaction_id)
            return False

        current = transactions[index]
        if current.status in TERMINAL_STATUSES and status != current.status:
            entry = StatusAuditEntry(
                transaction_id=transaction_id,
                previous_status=current.status,
                new_status=status,
                reason=reason or "status update from terminal state",
                actor=actor,
                timestamp=self._clock(),
            )
            self._audit_log.appendleft(entry)
            logger.warning(
                "Transaction %s overridden from terminal status %s to %s: %s",
                transaction_id,
                current.status.value,
                status.value,
                entry.reason,
            )

        transactions[index] = self._apply_status(current, status, completed_at, **changes)
        if not self._save(transactions):
            return False

        log_payment_operation(
            logger, "update_transaction_status", transaction_id=transaction_id, status=status.value
        )
        return True

    def update_transaction_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        completed_at: dt.datetime | None = None,
    ) -> bool:
        """Set the status of the most recent transaction with this ID.

        Completed and refunded transactions get ``completed_at`` (now if not
        given); any other status clears it.

        Returns:
            False if the transaction does not exist or could not be saved.
        """
        return self._transition(transaction_id, status, completed_at)

    def override_transaction_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        reason: str,
        actor: str | None = None,
    ) -> bool:
        """Change a status with an explicit reason, e.g. to revive a failed payment."""
        return self._transition(transaction_id, status, reason=reason, actor=actor)

    def record_refund(
        self,
        transaction_id: str,
        refund_id: str | None = None,
        refunded_at: dt.datetime | None = None,
    ) -> bool:
        """Mark a transaction refunded, keeping the processor refund ID."""
        changes = {"refund_id": refund_id} if refund_id else {}
        return self._transition(
            transaction_id, TransactionStatus.REFUNDED, refunded_at, **changes
        )

    def clear_all_transactions(self) -> bool:
        """Delete the stored ledger; False if the store rejected it."""
        try:
            self._store.delete(STORAGE_KEY)
        except StorageError as e:
            logger.error("Failed to clear transactions: %s", e)
            return False
        logger.info("All transactions cleared")
        return True

    # Reads

    def get_transactions(self, filter: TransactionFilter | None = None) -> list[Transaction]:
        """Transactions matching every criterion of the filter, newest first."""
        transactions = self._load()
        if filter is None:
            return transactions

        if filter.status is not None:
            transactions = [t for t in transactions if t.status == filter.status]
        if filter.date_from is not None:
            date_from = _as_utc(filter.date_from)
            transactions = [t for t in transactions if _as_utc(t.created_at) >= date_from]
        if filter.date_to is not None:
            date_to = _as_utc(filter.date_to)
            transactions = [t for t in transactions if _as_utc(t.created_at) <= date_to]
        if filter.min_amount is not None:
            transactions = [t for t in transactions if t.amount >= filter.min_amount]
        if filter.max_amount is not None:
            transactions = [t for t in transactions if t.amount <= filter.max_amount]
        return transactions

    def get_transaction_by_id(self, transaction_id: str) -> Transaction | None:
        """Most recent transaction with this ID, or None."""
        transactions = self._load()
        index = self._find_index(transactions, transaction_id)
        return transactions[index] if index != -1 else None

    def get_status_audit_log(self) -> list[StatusAuditEntry]:
        """Terminal-state overrides, newest first."""
        return list(self._audit_log)

    def get_transaction_stats(self) -> TransactionStats:
        """Counts per status; amounts cover completed transactions only."""
        stats = TransactionStats()
        transactions = self._load()
        stats.total = len(transactions)
        for transaction in transactions:
            if transaction.status == TransactionStatus.COMPLETED:
                stats.completed += 1
                stats.total_amount += transaction.amount
            elif transaction.status == TransactionStatus.PENDING:
                stats.pending += 1
            elif transaction.status == TransactionStatus.FAILED:
                stats.failed += 1
        stats.average_amount = stats.total_amount / stats.completed if stats.completed else 0
        return stats

    def detect_suspicious_transactions(self) -> list[Transaction]:
        """Flag recent transactions matching fraud heuristics.

        Within the last hour, per customer (email, else ID, else "unknown"):
        every transaction of a customer with more than three failures, and
        any transaction above the high-amount threshold. Flagging is
        informational only.
        """
        now = self._clock()
        recent = [
            t for t in self._load() if now - _as_utc(t.created_at) < SUSPICIOUS_WINDOW
        ]

        groups: dict[str, list[int]] = {}
        for index, transaction in enumerate(recent):
            groups.setdefault(transaction.customer_key, []).append(index)

        flagged: dict[int, None] = {}
        for indexes in groups.values():
            failed = sum(
                1 for i in indexes if recent[i].status == TransactionStatus.FAILED
            )
            if failed > SUSPICIOUS_FAILED_COUNT:
                flagged.update(dict.fromkeys(indexes))
            flagged.update(
                dict.fromkeys(i for i in indexes if recent[i].amount > SUSPICIOUS_AMOUNT)
            )

        return [recent[i] for i in flagged]

    # Export

    def export_transactions(self, format: ExportFormat | str) -> str:
        """Serialize the whole ledger as CSV or JSON.

        Returns:
            The export, or an empty string for an unsupported format.
        """
        try:
            export_format = ExportFormat(format)
        except ValueError:
            logger.error("Unsupported export format: %s", format)
            return ""

        transactions = self._load()
        if export_format == ExportFormat.JSON:
            return json.dumps([t.model_dump(mode="json") for t in transactions], indent=2)
        return self._to_csv(transactions)

    @staticmethod
    def _to_csv(transactions: list[Transaction]) -> str:
        buffer = io.StringIO()
        buffer.write(",".join(CSV_HEADERS) + "\n")
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        for t in transactions:
            customer = t.customer_info
            writer.writerow(
                [
                    t.id,
                    _format_number(t.amount),
                    t.currency,
                    t.status.value,
                    t.created_at.isoformat(),
                    t.completed_at.isoformat() if t.completed_at else "",
                    t.payment_method_id,
                    (customer.email if customer else None) or "",
                    (customer.name if customer else None) or "",
                    t.receipt_url or "",
                ]
            )
        return buffer.getvalue().rstrip("\n")
