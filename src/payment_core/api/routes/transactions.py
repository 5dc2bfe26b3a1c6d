"""Ledger administration endpoints.

All endpoints require the `X-Access-Token` header.
"""

import datetime as dt

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from payment_core.api.dependencies import require_access_token
from payment_core.context import PaymentCore
from payment_core.models.enums import ExportFormat, TransactionStatus
from payment_core.models.errors import ErrorCode, ErrorStats, PaymentCoreError
from payment_core.models.receipt import MoRReport, Receipt
from payment_core.models.security import SecurityStats, SuspiciousActivity
from payment_core.models.transaction import (
    StatusAuditEntry,
    Transaction,
    TransactionFilter,
    TransactionStats,
)
from payment_core.models.webhook import WebhookStats

router = APIRouter(tags=["transactions"])

EXPORT_MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
}


class StatusOverrideRequest(BaseModel):
    """Manual status change, e.g. reviving a failed payment."""

    status: TransactionStatus
    reason: str = Field(..., min_length=1)
    actor: str | None = None


def _get_or_404(core: PaymentCore, transaction_id: str) -> Transaction:
    transaction = core.ledger.get_transaction_by_id(transaction_id)
    if transaction is None:
        raise PaymentCoreError(
            ErrorCode.TRANSACTION_NOT_FOUND, {"transaction_id": transaction_id}
        )
    return transaction


@router.get("/transactions", response_model=list[Transaction])
async def list_transactions(
    status: TransactionStatus | None = None,
    date_from: dt.datetime | None = None,
    date_to: dt.datetime | None = None,
    min_amount: float | None = None,
    max_amount: float | None = None,
    core: PaymentCore = Depends(require_access_token),
) -> list[Transaction]:
    """Ledger entries matching every given filter, newest first."""
    return core.ledger.get_transactions(
        TransactionFilter(
            status=status,
            date_from=date_from,
            date_to=date_to,
            min_amount=min_amount,
            max_amount=max_amount,
        )
    )


@router.delete("/transactions")
async def clear_transactions(core: PaymentCore = Depends(require_access_token)) -> dict:
    return {"cleared": core.ledger.clear_all_transactions()}


@router.get("/transactions/stats", response_model=TransactionStats)
async def transaction_stats(
    core: PaymentCore = Depends(require_access_token),
) -> TransactionStats:
    return core.ledger.get_transaction_stats()


@router.get("/transactions/suspicious", response_model=list[Transaction])
async def suspicious_transactions(
    core: PaymentCore = Depends(require_access_token),
) -> list[Transaction]:
    return core.ledger.detect_suspicious_transactions()


@router.get("/transactions/export")
async def export_transactions(
    format: ExportFormat = Query(default=ExportFormat.CSV),
    core: PaymentCore = Depends(require_access_token),
) -> PlainTextResponse:
    """Whole ledger as CSV or JSON."""
    return PlainTextResponse(
        core.ledger.export_transactions(format),
        media_type=EXPORT_MEDIA_TYPES[format],
        headers={
            "Content-Disposition": f'attachment; filename="transactions.{format.value}"'
        },
    )


@router.get("/transactions/audit", response_model=list[StatusAuditEntry])
async def status_audit_log(
    core: PaymentCore = Depends(require_access_token),
) -> list[StatusAuditEntry]:
    return core.ledger.get_status_audit_log()


@router.get("/transactions/report", response_model=MoRReport)
async def mor_report(core: PaymentCore = Depends(require_access_token)) -> MoRReport:
    """Merchant-of-Record summary over completed transactions."""
    completed = core.ledger.get_transactions(
        TransactionFilter(status=TransactionStatus.COMPLETED)
    )
    return core.receipts.generate_mor_report(completed)


@router.get("/transactions/{transaction_id}", response_model=Transaction)
async def get_transaction(
    transaction_id: str, core: PaymentCore = Depends(require_access_token)
) -> Transaction:
    return _get_or_404(core, transaction_id)


@router.post("/transactions/{transaction_id}/status", response_model=Transaction)
async def override_status(
    transaction_id: str,
    body: StatusOverrideRequest,
    core: PaymentCore = Depends(require_access_token),
) -> Transaction:
    """Set a status manually; leaving failed or refunded is audited."""
    _get_or_404(core, transaction_id)
    core.ledger.override_transaction_status(
        transaction_id, body.status, body.reason, body.actor
    )
    return _get_or_404(core, transaction_id)


@router.get("/transactions/{transaction_id}/receipt", response_model=Receipt)
async def get_receipt(
    transaction_id: str,
    format: str = Query(default="json", pattern="^(json|text)$"),
    core: PaymentCore = Depends(require_access_token),
):
    """Receipt for a transaction, as JSON or plain text."""
    receipt = core.receipts.generate_receipt(_get_or_404(core, transaction_id))
    if format == "text":
        return PlainTextResponse(core.receipts.generate_receipt_text(receipt))
    return receipt


@router.get("/admin/errors", response_model=ErrorStats)
async def error_stats(core: PaymentCore = Depends(require_access_token)) -> ErrorStats:
    return core.error_handler.get_error_stats()


@router.get("/admin/security", response_model=SecurityStats)
async def security_stats(core: PaymentCore = Depends(require_access_token)) -> SecurityStats:
    return core.guard.get_security_stats()


@router.get("/admin/security/activities", response_model=list[SuspiciousActivity])
async def suspicious_activities(
    limit: int = Query(default=100, ge=1, le=1000),
    core: PaymentCore = Depends(require_access_token),
) -> list[SuspiciousActivity]:
    return core.guard.get_suspicious_activities(limit)


@router.get("/admin/webhooks", response_model=WebhookStats)
async def webhook_stats(core: PaymentCore = Depends(require_access_token)) -> WebhookStats:
    return core.webhooks.get_webhook_stats()
