"""FastAPI dependency providers.

Usage in routes:
    from payment_core.api.dependencies import get_core

    @router.get("/transactions")
    async def list_transactions(core: PaymentCore = Depends(get_core)):
        ...

Testing:
    Use payment_core.context.reset_payment_core() between tests.
"""

from fastapi import Depends, Header

from payment_core.context import PaymentCore, get_payment_core
from payment_core.models.errors import ErrorCode, PaymentCoreError

ACCESS_TOKEN_HEADER = "X-Access-Token"


def get_core() -> PaymentCore:
    """Shared PaymentCore for the running app."""
    return get_payment_core()


def require_access_token(
    x_access_token: str | None = Header(default=None, alias=ACCESS_TOKEN_HEADER),
    core: PaymentCore = Depends(get_core),
) -> PaymentCore:
    """Reject the request unless it carries the configured access token.

    Raises:
        PaymentCoreError: ACCESS_DENIED for a missing or wrong token.
    """
    if not core.guard.validate_access_token(x_access_token):
        core.guard.log_suspicious_activity(
            "access-token", "invalid_access_token", {"provided": bool(x_access_token)}
        )
        raise PaymentCoreError(ErrorCode.ACCESS_DENIED)
    return core
