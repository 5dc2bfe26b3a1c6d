"""Unit tests for TransactionLedger.

Test categories:
- Logging and lookup
- Status transitions and terminal-state audit
- Filtering and statistics
- Suspicious transaction detection
- CSV/JSON export
- Persistence failures
"""

import datetime as dt
import json
from unittest.mock import MagicMock

import pytest

from payment_core.models.enums import TransactionStatus
from payment_core.models.transaction import TransactionFilter
from payment_core.services.storage import InMemoryStore, StorageError
from payment_core.services.transaction_ledger import (
    CSV_HEADERS,
    STORAGE_KEY,
    TransactionLedger,
)

CSV_HEADER_ROW = ",".join(CSV_HEADERS)


# === Logging and Lookup ===


class TestLogTransaction:
    def test_roundtrip(self, ledger: TransactionLedger, transaction_factory) -> None:
        transaction = transaction_factory("pending-1")

        assert ledger.log_transaction(transaction) is True
        assert ledger.get_transaction_by_id("pending-1") == transaction

    def test_newest_first(self, ledger: TransactionLedger, transaction_factory) -> None:
        ledger.log_transaction(transaction_factory("a"))
        ledger.log_transaction(transaction_factory("b"))

        assert [t.id for t in ledger.get_transactions()] == ["b", "a"]

    def test_capped_at_max(self, store, clock, transaction_factory) -> None:
        ledger = TransactionLedger(store, max_transactions=3, clock=clock.datetime)
        for i in range(5):
            ledger.log_transaction(transaction_factory(f"t{i}"))

        assert [t.id for t in ledger.get_transactions()] == ["t4", "t3", "t2"]

    def test_duplicate_ids_resolve_to_latest(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        ledger.log_transaction(transaction_factory("dup", amount=10))
        ledger.log_transaction(transaction_factory("dup", amount=20))

        assert ledger.get_transaction_by_id("dup").amount == 20

    def test_missing_transaction(self, ledger: TransactionLedger) -> None:
        assert ledger.get_transaction_by_id("nope") is None

    def test_persisted_as_json_array(
        self, ledger: TransactionLedger, store: InMemoryStore, transaction_factory
    ) -> None:
        ledger.log_transaction(transaction_factory("a"))

        stored = json.loads(store.get(STORAGE_KEY))
        assert isinstance(stored, list)
        assert stored[0]["id"] == "a"

    def test_corrupt_storage_reads_empty(
        self, ledger: TransactionLedger, store: InMemoryStore
    ) -> None:
        store.set(STORAGE_KEY, "{not json")

        assert ledger.get_transactions() == []

    def test_malformed_entries_skipped(
        self, ledger: TransactionLedger, store: InMemoryStore, transaction_factory
    ) -> None:
        good = transaction_factory("good").model_dump(mode="json")
        store.set(STORAGE_KEY, json.dumps([good, {"id": "bad"}]))

        assert [t.id for t in ledger.get_transactions()] == ["good"]


# === Status Transitions ===


class TestStatusTransitions:
    def test_complete_sets_completed_at(
        self, ledger: TransactionLedger, transaction_factory, clock
    ) -> None:
        ledger.log_transaction(transaction_factory("t1"))

        assert ledger.update_transaction_status("t1", TransactionStatus.COMPLETED) is True

        transaction = ledger.get_transaction_by_id("t1")
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.completed_at == clock.datetime()

    def test_complete_twice_is_idempotent(
        self, ledger: TransactionLedger, transaction_factory, clock
    ) -> None:
        ledger.log_transaction(transaction_factory("t1"))
        ledger.update_transaction_status("t1", TransactionStatus.COMPLETED)
        first = ledger.get_transaction_by_id("t1").completed_at

        clock.advance(5)
        ledger.update_transaction_status("t1", TransactionStatus.COMPLETED)
        second = ledger.get_transaction_by_id("t1")

        assert second.status == TransactionStatus.COMPLETED
        assert second.completed_at >= first

    def test_explicit_completed_at(self, ledger: TransactionLedger, transaction_factory) -> None:
        ledger.log_transaction(transaction_factory("t1"))
        when = dt.datetime(2026, 1, 1, tzinfo=dt.UTC)

        ledger.update_transaction_status("t1", TransactionStatus.COMPLETED, when)

        assert ledger.get_transaction_by_id("t1").completed_at == when

    def test_failed_clears_completed_at(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        ledger.log_transaction(transaction_factory("t1"))
        ledger.update_transaction_status("t1", TransactionStatus.COMPLETED)
        ledger.update_transaction_status("t1", TransactionStatus.PENDING)

        assert ledger.get_transaction_by_id("t1").completed_at is None

    def test_unknown_id_returns_false(self, ledger: TransactionLedger) -> None:
        assert ledger.update_transaction_status("nope", TransactionStatus.COMPLETED) is False

    def test_accepts_status_string(self, ledger: TransactionLedger, transaction_factory) -> None:
        ledger.log_transaction(transaction_factory("t1"))

        ledger.update_transaction_status("t1", "failed")

        assert ledger.get_transaction_by_id("t1").status == TransactionStatus.FAILED

    def test_record_refund(self, ledger: TransactionLedger, transaction_factory) -> None:
        ledger.log_transaction(transaction_factory("t1", status=TransactionStatus.COMPLETED))
        when = dt.datetime(2026, 2, 1, tzinfo=dt.UTC)

        assert ledger.record_refund("t1", refund_id="ref_1", refunded_at=when) is True

        transaction = ledger.get_transaction_by_id("t1")
        assert transaction.status == TransactionStatus.REFUNDED
        assert transaction.refund_id == "ref_1"
        assert transaction.completed_at == when

    def test_leaving_terminal_state_is_audited(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        ledger.log_transaction(transaction_factory("t1", status=TransactionStatus.FAILED))

        assert ledger.override_transaction_status(
            "t1", TransactionStatus.COMPLETED, "paid by bank transfer", actor="admin"
        )

        assert ledger.get_transaction_by_id("t1").status == TransactionStatus.COMPLETED
        audit = ledger.get_status_audit_log()
        assert len(audit) == 1
        assert audit[0].previous_status == TransactionStatus.FAILED
        assert audit[0].new_status == TransactionStatus.COMPLETED
        assert audit[0].reason == "paid by bank transfer"
        assert audit[0].actor == "admin"

    def test_plain_update_from_terminal_also_audited(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        ledger.log_transaction(transaction_factory("t1", status=TransactionStatus.REFUNDED))

        ledger.update_transaction_status("t1", TransactionStatus.COMPLETED)

        assert ledger.get_status_audit_log()[0].reason == "status update from terminal state"

    def test_regular_transitions_not_audited(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        ledger.log_transaction(transaction_factory("t1"))
        ledger.update_transaction_status("t1", TransactionStatus.COMPLETED)
        ledger.record_refund("t1")

        assert ledger.get_status_audit_log() == []

    def test_clear_all(self, ledger: TransactionLedger, transaction_factory) -> None:
        ledger.log_transaction(transaction_factory("t1"))

        assert ledger.clear_all_transactions() is True
        assert ledger.get_transactions() == []


# === Filtering and Statistics ===


class TestQueries:
    @pytest.fixture
    def populated(self, ledger: TransactionLedger, transaction_factory) -> TransactionLedger:
        base = dt.datetime(2026, 1, 10, tzinfo=dt.UTC)
        ledger.log_transaction(
            transaction_factory("c100", 100, TransactionStatus.COMPLETED, created_at=base)
        )
        ledger.log_transaction(
            transaction_factory(
                "p50", 50, TransactionStatus.PENDING, created_at=base + dt.timedelta(days=1)
            )
        )
        ledger.log_transaction(
            transaction_factory(
                "f75", 75, TransactionStatus.FAILED, created_at=base + dt.timedelta(days=2)
            )
        )
        return ledger

    def test_stats(self, populated: TransactionLedger) -> None:
        stats = populated.get_transaction_stats()

        assert stats.total == 3
        assert stats.completed == 1
        assert stats.pending == 1
        assert stats.failed == 1
        assert stats.total_amount == 100
        assert stats.average_amount == 100

    def test_stats_empty(self, ledger: TransactionLedger) -> None:
        stats = ledger.get_transaction_stats()

        assert stats.total == 0
        assert stats.average_amount == 0

    def test_filter_by_status(self, populated: TransactionLedger) -> None:
        result = populated.get_transactions(TransactionFilter(status=TransactionStatus.PENDING))

        assert [t.id for t in result] == ["p50"]

    def test_filter_by_amount_range(self, populated: TransactionLedger) -> None:
        result = populated.get_transactions(TransactionFilter(min_amount=60, max_amount=100))

        assert {t.id for t in result} == {"c100", "f75"}

    def test_filter_by_dates_inclusive(self, populated: TransactionLedger) -> None:
        result = populated.get_transactions(
            TransactionFilter(
                date_from=dt.datetime(2026, 1, 11, tzinfo=dt.UTC),
                date_to=dt.datetime(2026, 1, 12),
            )
        )

        assert [t.id for t in result] == ["f75", "p50"]

    def test_filters_combine(self, populated: TransactionLedger) -> None:
        result = populated.get_transactions(
            TransactionFilter(status=TransactionStatus.COMPLETED, min_amount=200)
        )

        assert result == []


# === Suspicious Transactions ===


class TestSuspiciousTransactions:
    def test_many_failures_flag_customer(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        for i in range(4):
            ledger.log_transaction(
                transaction_factory(f"f{i}", 20, TransactionStatus.FAILED, email="x@example.com")
            )
        ledger.log_transaction(transaction_factory("ok", 20, email="x@example.com"))
        ledger.log_transaction(transaction_factory("other", 20, email="y@example.com"))

        flagged = {t.id for t in ledger.detect_suspicious_transactions()}

        assert flagged == {"f0", "f1", "f2", "f3", "ok"}

    def test_three_failures_not_flagged(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        for i in range(3):
            ledger.log_transaction(transaction_factory(f"f{i}", 20, TransactionStatus.FAILED))

        assert ledger.detect_suspicious_transactions() == []

    def test_high_amount_flagged_once(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        for i in range(4):
            ledger.log_transaction(transaction_factory(f"f{i}", 20, TransactionStatus.FAILED))
        ledger.log_transaction(transaction_factory("big", 1500))

        flagged = [t.id for t in ledger.detect_suspicious_transactions()]

        assert flagged.count("big") == 1
        assert len(flagged) == 5

    def test_old_transactions_ignored(
        self, ledger: TransactionLedger, transaction_factory, clock
    ) -> None:
        ledger.log_transaction(transaction_factory("big", 5000))
        clock.advance(2 * 60 * 60)

        assert ledger.detect_suspicious_transactions() == []

    def test_unknown_customers_grouped(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        for i in range(4):
            ledger.log_transaction(
                transaction_factory(f"anon{i}", 10, TransactionStatus.FAILED, email=None)
            )

        assert len(ledger.detect_suspicious_transactions()) == 4


# === Export ===


class TestExport:
    def test_json_export_matches_ledger(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        ledger.log_transaction(transaction_factory("a"))
        ledger.log_transaction(transaction_factory("b"))

        exported = json.loads(ledger.export_transactions("json"))

        assert len(exported) == len(ledger.get_transactions())
        assert exported[0]["id"] == "b"

    def test_csv_export(self, ledger: TransactionLedger, transaction_factory) -> None:
        ledger.log_transaction(transaction_factory("a", 1250.5))

        lines = ledger.export_transactions("csv").split("\n")

        assert lines[0] == CSV_HEADER_ROW
        assert lines[1].startswith('"a","1250.5","ILS","pending",')
        assert '"client@example.com","Dana Levi",""' in lines[1]

    def test_csv_whole_amounts_have_no_decimals(
        self, ledger: TransactionLedger, transaction_factory
    ) -> None:
        ledger.log_transaction(transaction_factory("a", 100.0))

        assert '"100"' in ledger.export_transactions("csv").split("\n")[1]

    def test_csv_empty_ledger_has_header(self, ledger: TransactionLedger) -> None:
        assert ledger.export_transactions("csv") == CSV_HEADER_ROW

    def test_csv_escapes_quotes(self, ledger: TransactionLedger, transaction_factory) -> None:
        transaction = transaction_factory("a").model_copy(
            update={"receipt_url": 'https://x.test/"r"'}
        )
        ledger.log_transaction(transaction)

        assert '"https://x.test/""r"""' in ledger.export_transactions("csv")

    def test_unsupported_format(self, ledger: TransactionLedger) -> None:
        assert ledger.export_transactions("xml") == ""


# === Persistence Failures ===


class TestPersistence:
    def test_quota_exceeded_trims_to_half(self, clock, transaction_factory) -> None:
        store = InMemoryStore(quota_bytes=3000)
        ledger = TransactionLedger(store, max_transactions=16, clock=clock.datetime)

        for i in range(20):
            ledger.log_transaction(transaction_factory(f"t{i:02d}"))

        transactions = ledger.get_transactions()
        assert 0 < len(transactions) <= 10
        assert transactions[0].id == "t19"

    def test_write_failure_returns_false(self, transaction_factory) -> None:
        store = MagicMock()
        store.get.return_value = None
        store.set.side_effect = StorageError("table missing")
        ledger = TransactionLedger(store)

        assert ledger.log_transaction(transaction_factory("a")) is False

    def test_read_failure_reads_empty(self) -> None:
        store = MagicMock()
        store.get.side_effect = StorageError("throttled")

        assert TransactionLedger(store).get_transactions() == []

    def test_read_failure_does_not_overwrite_on_log(self, transaction_factory) -> None:
        store = InMemoryStore()
        ledger = TransactionLedger(store)
        for i in range(5):
            ledger.log_transaction(transaction_factory(f"t{i}"))
        original_get = store.get
        store.get = MagicMock(side_effect=StorageError("throttled"))

        assert ledger.log_transaction(transaction_factory("new")) is False

        store.get = original_get
        assert [t.id for t in ledger.get_transactions()] == ["t4", "t3", "t2", "t1", "t0"]

    def test_read_failure_does_not_overwrite_on_status_update(self, transaction_factory) -> None:
        store = InMemoryStore()
        ledger = TransactionLedger(store)
        ledger.log_transaction(transaction_factory("a"))
        ledger.log_transaction(transaction_factory("b"))
        original_get = store.get
        store.get = MagicMock(side_effect=StorageError("throttled"))

        assert ledger.update_transaction_status("a", TransactionStatus.COMPLETED) is False

        store.get = original_get
        transactions = ledger.get_transactions()
        assert [t.id for t in transactions] == ["b", "a"]
        assert transactions[1].status == TransactionStatus.PENDING
