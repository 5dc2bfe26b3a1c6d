"""Contract tests for the session and checkout endpoints.

Test categories:
- POST /api/payments/session: access token required
- POST /api/payments/checkout: session/CSRF checks, validation, processor outcomes
- Response headers added by middleware
"""

import pytest
from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_502_BAD_GATEWAY,
)

from payment_core.context import PaymentCore
from payment_core.models.enums import TransactionStatus

pytestmark = pytest.mark.contract

CHECKOUT_BODY = {
    "amount": 1250,
    "currency": "ILS",
    "customer_email": "client@example.com",
    "customer_name": "Dana Levi",
    "description": "RAID recovery",
}


# === Session ===


class TestSession:
    def test_issues_tokens(self, client: TestClient, admin_headers, core: PaymentCore) -> None:
        response = client.post("/api/payments/session", headers=admin_headers)

        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert core.guard.validate_session_token(body["session_token"]) is True
        assert core.guard.validate_csrf_token(body["csrf_token"], body["session_token"]) is True

    @pytest.mark.parametrize("headers", [{}, {"X-Access-Token": "wrong"}])
    def test_access_token_required(self, client: TestClient, core: PaymentCore, headers) -> None:
        response = client.post("/api/payments/session", headers=headers)

        assert response.status_code == HTTP_403_FORBIDDEN
        assert response.json()["error_code"] == "ERR_SEC_002"
        assert core.guard.get_suspicious_activities()[0].activity == "invalid_access_token"


# === Checkout ===


class TestCheckout:
    def test_success(self, client: TestClient, payment_headers, core: PaymentCore, processor) -> None:
        response = client.post("/api/payments/checkout", json=CHECKOUT_BODY, headers=payment_headers)

        assert response.status_code == HTTP_201_CREATED
        body = response.json()
        assert body["success"] is True
        assert body["checkout_url"].startswith("https://store.lemonsqueezy.com/checkout/")
        assert body["transaction_id"].startswith("pending-")

        transaction = core.ledger.get_transaction_by_id(body["transaction_id"])
        assert transaction.status == TransactionStatus.PENDING
        assert transaction.amount == 1250
        assert len(processor.requests) == 1

    def test_missing_session(self, client: TestClient, core: PaymentCore) -> None:
        response = client.post("/api/payments/checkout", json=CHECKOUT_BODY)

        assert response.status_code == HTTP_403_FORBIDDEN
        assert response.json()["error_code"] == "ERR_SEC_003"
        assert core.guard.get_suspicious_activities()[0].activity == "invalid_session_token"
        assert core.ledger.get_transactions() == []

    def test_csrf_from_other_session(self, client: TestClient, admin_headers, payment_headers) -> None:
        other = client.post("/api/payments/session", headers=admin_headers).json()
        headers = {**payment_headers, "X-CSRF-Token": other["csrf_token"]}

        response = client.post("/api/payments/checkout", json=CHECKOUT_BODY, headers=headers)

        assert response.status_code == HTTP_403_FORBIDDEN
        assert response.json()["error_code"] == "ERR_SEC_004"

    def test_field_errors(self, client: TestClient, payment_headers, processor) -> None:
        body = {**CHECKOUT_BODY, "amount": 0.5, "customer_email": "nope"}

        response = client.post("/api/payments/checkout", json=body, headers=payment_headers)

        assert response.status_code == HTTP_400_BAD_REQUEST
        fields = {e["field"] for e in response.json()["field_errors"]}
        assert fields == {"amount", "customer_email"}
        assert processor.requests == []

    def test_schema_violation(self, client: TestClient, payment_headers) -> None:
        response = client.post(
            "/api/payments/checkout", json={"currency": "ILS"}, headers=payment_headers
        )

        assert response.status_code == 422

    def test_processor_failure_marks_failed(
        self, client: TestClient, payment_headers, core: PaymentCore, processor
    ) -> None:
        processor.status = 422

        response = client.post("/api/payments/checkout", json=CHECKOUT_BODY, headers=payment_headers)

        assert response.status_code == HTTP_502_BAD_GATEWAY
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Processor failure"
        assert body["error_record"]["code"] == "ERR_PAY_005"
        assert core.ledger.get_transaction_by_id(body["transaction_id"]).status == (
            TransactionStatus.FAILED
        )

    def test_rate_limited(self, client: TestClient, payment_headers) -> None:
        for _ in range(5):
            assert (
                client.post(
                    "/api/payments/checkout", json=CHECKOUT_BODY, headers=payment_headers
                ).status_code
                == HTTP_201_CREATED
            )

        response = client.post("/api/payments/checkout", json=CHECKOUT_BODY, headers=payment_headers)

        assert response.status_code == HTTP_429_TOO_MANY_REQUESTS
        assert response.json()["error_record"]["code"] == "ERR_SEC_001"


# === Middleware ===


class TestMiddleware:
    def test_ping_headers(self, client: TestClient) -> None:
        response = client.get("/api/ping")

        assert response.status_code == HTTP_200_OK
        assert response.json()["status"] == "ok"
        assert "default-src 'self'" in response.headers["Content-Security-Policy"]
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Correlation-ID"]

    def test_correlation_id_echoed(self, client: TestClient) -> None:
        response = client.get("/api/ping", headers={"X-Correlation-ID": "req-123"})

        assert response.headers["X-Correlation-ID"] == "req-123"
