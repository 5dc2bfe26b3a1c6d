"""Webhook endpoint for Lemon Squeezy deliveries.

No access token: the payload is authenticated by its X-Signature header.
"""

from fastapi import APIRouter, Depends, Header, Request

from payment_core.api.dependencies import get_core
from payment_core.context import PaymentCore
from payment_core.models.errors import ErrorCode, PaymentCoreError
from payment_core.models.webhook import WebhookResult

router = APIRouter(tags=["webhooks"])

SIGNATURE_HEADER = "X-Signature"


@router.post(
    "/webhooks/lemonsqueezy",
    summary="Lemon Squeezy webhook",
    description="""
Receive an order or subscription event.

Handled events: `order_created`, `order_refunded`, `subscription_created`,
`subscription_updated`, `subscription_cancelled`. Other events are
acknowledged and ignored.
""",
    response_model=WebhookResult,
    responses={400: {"description": "Invalid signature or malformed payload"}},
)
async def lemonsqueezy_webhook(
    request: Request,
    signature: str | None = Header(default=None, alias=SIGNATURE_HEADER),
    core: PaymentCore = Depends(get_core),
) -> WebhookResult:
    payload = await request.body()
    result = core.webhooks.handle_webhook(payload, signature)
    if result.success:
        return result

    if result.message == "Invalid signature":
        raise PaymentCoreError(ErrorCode.INVALID_WEBHOOK_SIGNATURE)
    raise PaymentCoreError(ErrorCode.MALFORMED_WEBHOOK_PAYLOAD)
