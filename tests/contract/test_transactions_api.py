"""Contract tests for the ledger administration endpoints.

Test categories:
- Access control (403)
- Listing, filtering and lookup (200/404)
- Status overrides and the audit log
- Export, receipts and the MoR report
- Admin statistics
"""

import datetime as dt
import json

import pytest
from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
)

from payment_core.context import PaymentCore
from payment_core.models.enums import TransactionStatus

pytestmark = pytest.mark.contract


@pytest.fixture
def seeded(core: PaymentCore, transaction_factory) -> PaymentCore:
    now = dt.datetime.now(dt.UTC)
    core.ledger.log_transaction(
        transaction_factory("t1", 100, TransactionStatus.COMPLETED, created_at=now)
    )
    core.ledger.log_transaction(
        transaction_factory("t2", 40, TransactionStatus.FAILED, currency="USD", created_at=now)
    )
    core.ledger.log_transaction(transaction_factory("t3", 2500, created_at=now))
    return core


class TestAccessControl:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/transactions"),
            ("delete", "/api/transactions"),
            ("get", "/api/transactions/stats"),
            ("get", "/api/transactions/export"),
            ("get", "/api/transactions/t1"),
            ("get", "/api/transactions/t1/receipt"),
            ("get", "/api/admin/errors"),
            ("get", "/api/admin/webhooks"),
        ],
    )
    def test_requires_access_token(self, client: TestClient, seeded, method, path) -> None:
        response = getattr(client, method)(path)

        assert response.status_code == HTTP_403_FORBIDDEN
        assert response.json()["error_code"] == "ERR_SEC_002"


class TestListing:
    def test_newest_first(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.get("/api/transactions", headers=admin_headers)

        assert response.status_code == HTTP_200_OK
        assert [t["id"] for t in response.json()] == ["t3", "t2", "t1"]

    def test_filters(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.get(
            "/api/transactions",
            params={"status": "completed", "min_amount": 50},
            headers=admin_headers,
        )

        assert [t["id"] for t in response.json()] == ["t1"]

    def test_invalid_status_filter(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.get(
            "/api/transactions", params={"status": "lost"}, headers=admin_headers
        )

        assert response.status_code == 422

    def test_lookup(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.get("/api/transactions/t2", headers=admin_headers)

        assert response.status_code == HTTP_200_OK
        assert response.json()["currency"] == "USD"
        assert response.json()["status"] == "failed"

    def test_unknown_transaction(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.get("/api/transactions/nope", headers=admin_headers)

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "ERR_TXN_001"

    def test_stats(self, client: TestClient, seeded, admin_headers) -> None:
        stats = client.get("/api/transactions/stats", headers=admin_headers).json()

        assert stats["total"] == 3
        assert stats["completed"] == 1
        assert stats["failed"] == 1
        assert stats["pending"] == 1
        assert stats["total_amount"] == 100

    def test_suspicious(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.get("/api/transactions/suspicious", headers=admin_headers)

        assert [t["id"] for t in response.json()] == ["t3"]

    def test_clear(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.delete("/api/transactions", headers=admin_headers)

        assert response.json() == {"cleared": True}
        assert seeded.ledger.get_transactions() == []


class TestStatusOverride:
    def test_revive_failed_is_audited(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.post(
            "/api/transactions/t2/status",
            json={"status": "completed", "reason": "Paid by bank transfer", "actor": "ops"},
            headers=admin_headers,
        )

        assert response.status_code == HTTP_200_OK
        assert response.json()["status"] == "completed"
        assert response.json()["completed_at"] is not None

        audit = client.get("/api/transactions/audit", headers=admin_headers).json()
        assert audit[0]["transaction_id"] == "t2"
        assert audit[0]["previous_status"] == "failed"
        assert audit[0]["new_status"] == "completed"
        assert audit[0]["actor"] == "ops"

    def test_reason_required(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.post(
            "/api/transactions/t2/status",
            json={"status": "completed", "reason": ""},
            headers=admin_headers,
        )

        assert response.status_code == 422

    def test_unknown_transaction(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.post(
            "/api/transactions/nope/status",
            json={"status": "completed", "reason": "x"},
            headers=admin_headers,
        )

        assert response.status_code == HTTP_404_NOT_FOUND


class TestExportAndReceipts:
    def test_csv_export(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.get("/api/transactions/export", headers=admin_headers)

        assert response.status_code == HTTP_200_OK
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="transactions.csv"' in response.headers["content-disposition"]
        lines = response.text.splitlines()
        assert lines[0].startswith("ID,Amount,Currency,Status")
        assert len(lines) == 4

    def test_json_export(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.get(
            "/api/transactions/export", params={"format": "json"}, headers=admin_headers
        )

        assert response.headers["content-type"].startswith("application/json")
        assert [t["id"] for t in json.loads(response.text)] == ["t3", "t2", "t1"]

    def test_receipt_json(self, client: TestClient, seeded, admin_headers) -> None:
        receipt = client.get("/api/transactions/t1/receipt", headers=admin_headers).json()

        assert receipt["id"] == "receipt_t1"
        assert receipt["amount"] == 100
        assert receipt["tax_info"]["amount"] == 0

    def test_receipt_text(self, client: TestClient, seeded, admin_headers) -> None:
        response = client.get(
            "/api/transactions/t1/receipt", params={"format": "text"}, headers=admin_headers
        )

        assert response.headers["content-type"].startswith("text/plain")
        assert "PAYMENT RECEIPT" in response.text
        assert "Receipt ID: receipt_t1" in response.text

    def test_mor_report_covers_completed_only(
        self, client: TestClient, seeded, admin_headers
    ) -> None:
        report = client.get("/api/transactions/report", headers=admin_headers).json()

        assert report["total_transactions"] == 1
        assert report["total_amount"] == 100
        assert list(report["currency_breakdown"]) == ["ILS"]


class TestAdminStats:
    def test_security_stats_and_activities(
        self, client: TestClient, seeded, admin_headers
    ) -> None:
        client.get("/api/transactions", headers={"X-Access-Token": "wrong"})

        stats = client.get("/api/admin/security", headers=admin_headers).json()
        activities = client.get(
            "/api/admin/security/activities", params={"limit": 1}, headers=admin_headers
        ).json()

        assert stats["suspicious_activities"] == 1
        assert len(activities) == 1
        assert activities[0]["activity"] == "invalid_access_token"

    def test_error_and_webhook_stats(self, client: TestClient, seeded, admin_headers) -> None:
        errors = client.get("/api/admin/errors", headers=admin_headers).json()
        webhooks = client.get("/api/admin/webhooks", headers=admin_headers).json()

        assert errors["total"] == 0
        assert webhooks["total_events"] == 0
