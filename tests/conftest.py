"""Pytest configuration and fixtures for payment core tests.

This module provides reusable fixtures for testing:
- Environment and AWS credentials for moto
- A controllable clock
- Isolated service instances (store, ledger, guard, error handler)
- Sample transactions and webhook payloads
"""

import datetime as dt
import hashlib
import hmac
import json
import os
from typing import Any, Generator

import pytest

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

os.environ["ENVIRONMENT"] = "test"
os.environ["PAYMENT_SSM_ENABLED"] = "false"
os.environ["LEMONSQUEEZY_API_KEY"] = "ls_test_api_key"
os.environ["LEMONSQUEEZY_STORE_ID"] = "12345"
os.environ["LEMONSQUEEZY_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYMENT_ACCESS_TOKEN"] = "access-token-for-tests"
os.environ["PAYMENT_TOKEN_SIGNING_KEY"] = "signing-key-for-tests"

from payment_core.config import PaymentSettings  # noqa: E402
from payment_core.context import reset_payment_core  # noqa: E402
from payment_core.models.enums import TransactionStatus  # noqa: E402
from payment_core.models.transaction import CustomerInfo, Transaction  # noqa: E402
from payment_core.services.error_handler import ErrorHandler  # noqa: E402
from payment_core.services.security_guard import SecurityGuard  # noqa: E402
from payment_core.services.ssm_service import get_ssm_service  # noqa: E402
from payment_core.services.storage import InMemoryStore  # noqa: E402
from payment_core.services.transaction_ledger import TransactionLedger  # noqa: E402

TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_ACCESS_TOKEN = "access-token-for-tests"

# 2026-01-15 12:00:00 UTC
BASE_EPOCH = 1768478400.0


class FakeClock:
    """Manually advanced clock returning epoch seconds or datetimes."""

    def __init__(self, start: float = BASE_EPOCH) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def datetime(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self.now, dt.UTC)

    def advance(self, seconds: float) -> None:
        self.now += seconds


# === Singleton Reset ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset shared PaymentCore and SSM instances before and after each test."""
    reset_payment_core()
    get_ssm_service.cache_clear()
    yield
    reset_payment_core()
    get_ssm_service.cache_clear()


# === Service Fixtures ===


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> PaymentSettings:
    """Explicit settings: no SSM, no retries delay."""
    return PaymentSettings(
        environment="test",
        store_id="12345",
        api_key="ls_test_api_key",
        webhook_secret=TEST_WEBHOOK_SECRET,
        access_token=TEST_ACCESS_TOKEN,
        token_signing_key="signing-key-for-tests",
        ssm_enabled=False,
        retry_base_delay_seconds=0,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def ledger(store: InMemoryStore, clock: FakeClock) -> TransactionLedger:
    return TransactionLedger(store, clock=clock.datetime)


@pytest.fixture
def guard(clock: FakeClock) -> SecurityGuard:
    return SecurityGuard(
        signing_key="signing-key-for-tests", access_token=TEST_ACCESS_TOKEN, clock=clock
    )


@pytest.fixture
def error_handler() -> ErrorHandler:
    return ErrorHandler(enable_logging=False)


# === Sample Data Fixtures ===


def make_transaction(
    transaction_id: str,
    amount: float = 100.0,
    status: TransactionStatus = TransactionStatus.PENDING,
    *,
    currency: str = "ILS",
    email: str | None = "client@example.com",
    created_at: dt.datetime | None = None,
) -> Transaction:
    return Transaction(
        id=transaction_id,
        amount=amount,
        currency=currency,
        status=status,
        created_at=created_at or dt.datetime.fromtimestamp(BASE_EPOCH, dt.UTC),
        customer_info=CustomerInfo(email=email, name="Dana Levi") if email else None,
    )


@pytest.fixture
def transaction_factory():
    """Factory for ledger transactions dated at the fake clock's start."""
    return make_transaction


def sign_payload(body: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


@pytest.fixture
def sign():
    """HMAC-SHA256 hex signature of a raw webhook body."""
    return sign_payload


def make_webhook_payload(
    event_name: str = "order_created",
    resource_id: int | str = 98765,
    *,
    total: int = 12500,
    currency: str = "ils",
    custom_data: dict[str, Any] | None = None,
    customer_email: str | None = "client@example.com",
    webhook_id: str | None = None,
) -> bytes:
    meta: dict[str, Any] = {"event_name": event_name}
    if custom_data is not None:
        meta["custom_data"] = custom_data
    if webhook_id is not None:
        meta["webhook_id"] = webhook_id
    return json.dumps(
        {
            "meta": meta,
            "data": {
                "type": "orders",
                "id": resource_id,
                "attributes": {
                    "status": "paid",
                    "total": total,
                    "currency": currency,
                    "customer_email": customer_email,
                },
            },
        }
    ).encode("utf-8")


@pytest.fixture
def webhook_payload():
    """Factory for raw Lemon Squeezy webhook bodies."""
    return make_webhook_payload
