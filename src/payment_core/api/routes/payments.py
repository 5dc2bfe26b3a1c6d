"""Checkout endpoints.

Provides REST endpoints for:
- Issuing a session token and a CSRF token for the payment page
  (access token required)
- Starting a Lemon Squeezy checkout (session and CSRF tokens required)
"""

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.status import HTTP_201_CREATED, HTTP_400_BAD_REQUEST, HTTP_502_BAD_GATEWAY

from payment_core.api.dependencies import get_core, require_access_token
from payment_core.api.exceptions import get_http_status_for_error
from payment_core.context import PaymentCore
from payment_core.models.errors import ErrorCode, PaymentCoreError
from payment_core.models.payment import PaymentFormData, PaymentResult

router = APIRouter(tags=["payments"])

SESSION_TOKEN_HEADER = "X-Session-Token"
CSRF_TOKEN_HEADER = "X-CSRF-Token"


class SessionResponse(BaseModel):
    """Tokens the payment page sends back with the checkout request."""

    session_token: str = Field(..., description="Signed session token (24h)")
    csrf_token: str = Field(..., description="CSRF token bound to the session token")


class CheckoutRequest(BaseModel):
    """Payment form as submitted by the customer."""

    amount: float = Field(..., description="Amount in major units", examples=[1250.0])
    currency: str = Field(..., description="ILS, USD or EUR", examples=["ILS"])
    customer_email: str = Field(default="", description="Customer email address")
    customer_name: str = Field(..., description="Customer full name")
    description: str | None = Field(default=None, description="Service description")


def _client_identifier(request: Request) -> str:
    if request.client is not None:
        return f"checkout:{request.client.host}"
    return "checkout-form"


def _status_for_result(result: PaymentResult) -> int:
    record = result.error_record
    if record is None or record.code is None:
        return HTTP_502_BAD_GATEWAY
    try:
        return get_http_status_for_error(ErrorCode(record.code))
    except ValueError:
        return HTTP_502_BAD_GATEWAY


@router.post(
    "/payments/session",
    summary="Start a payment session",
    description="""
Issue a session token and a CSRF token for the payment page.

**Requires the `X-Access-Token` header.**
""",
    response_model=SessionResponse,
    responses={403: {"description": "Missing or invalid access token"}},
)
async def create_session(core: PaymentCore = Depends(require_access_token)) -> SessionResponse:
    session_token = core.guard.generate_session_token()
    return SessionResponse(
        session_token=session_token,
        csrf_token=core.guard.generate_csrf_token(session_token),
    )


@router.post(
    "/payments/checkout",
    summary="Create checkout",
    description="""
Validate the payment form and create a hosted checkout.

**Requires `X-Session-Token` and `X-CSRF-Token` from `/payments/session`.**

On success the response carries `checkout_url`; the client redirects there.
Failures carry a classified `error_record` and, for form problems,
per-field `field_errors`.
""",
    response_model=PaymentResult,
    status_code=HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid form or high-risk payment"},
        403: {"description": "Invalid session or CSRF token"},
        429: {"description": "Too many attempts"},
        502: {"description": "Checkout could not be created"},
    },
)
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    session_token: str | None = Header(default=None, alias=SESSION_TOKEN_HEADER),
    csrf_token: str | None = Header(default=None, alias=CSRF_TOKEN_HEADER),
    core: PaymentCore = Depends(get_core),
):
    identifier = _client_identifier(request)
    if not core.guard.validate_session_token(session_token):
        core.guard.log_suspicious_activity(identifier, "invalid_session_token")
        raise PaymentCoreError(ErrorCode.INVALID_SESSION)
    if not core.guard.validate_csrf_token(csrf_token, session_token):
        core.guard.log_suspicious_activity(identifier, "invalid_csrf_token")
        raise PaymentCoreError(ErrorCode.INVALID_CSRF_TOKEN)

    form = PaymentFormData(**body.model_dump())
    field_errors = core.gateway.validate_payment_form(form)
    if field_errors:
        result = PaymentResult(
            success=False, error="Invalid payment form", field_errors=field_errors
        )
        return JSONResponse(
            status_code=HTTP_400_BAD_REQUEST, content=result.model_dump(mode="json")
        )

    result = await core.gateway.process_payment(form, identifier)
    if not result.success:
        return JSONResponse(
            status_code=_status_for_result(result), content=result.model_dump(mode="json")
        )
    return result
