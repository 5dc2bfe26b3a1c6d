"""Fixtures for HTTP contract tests.

The app's shared PaymentCore is replaced with one built from test settings
and a mocked Lemon Squeezy API, so every test starts with an empty ledger.
"""

from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient

from payment_core.api.dependencies import get_core
from payment_core.api.main import app
from payment_core.context import PaymentCore

CHECKOUT_URL = "https://store.lemonsqueezy.com/checkout/custom/contract-1"


class ProcessorMock:
    """Lemon Squeezy API double; ``status`` switches it into failure mode."""

    def __init__(self) -> None:
        self.status = 201
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status >= 400:
            return httpx.Response(self.status, json={"errors": [{"detail": "Processor failure"}]})
        return httpx.Response(
            201, json={"data": {"type": "checkouts", "id": "chk_1", "attributes": {"url": CHECKOUT_URL}}}
        )


async def _no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def processor() -> ProcessorMock:
    return ProcessorMock()


@pytest.fixture
def core(settings, processor: ProcessorMock) -> Generator[PaymentCore, None, None]:
    payment_core = PaymentCore(
        settings, transport=httpx.MockTransport(processor), sleep=_no_sleep
    )
    app.dependency_overrides[get_core] = lambda: payment_core
    yield payment_core
    app.dependency_overrides.pop(get_core, None)
    payment_core.close()


@pytest.fixture
def client(core: PaymentCore) -> TestClient:
    """Create test client for API."""
    return TestClient(app)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Access-Token": "access-token-for-tests"}


@pytest.fixture
def payment_headers(client: TestClient, admin_headers) -> dict[str, str]:
    """Session and CSRF headers obtained through the session endpoint."""
    tokens = client.post("/api/payments/session", headers=admin_headers).json()
    return {"X-Session-Token": tokens["session_token"], "X-CSRF-Token": tokens["csrf_token"]}
