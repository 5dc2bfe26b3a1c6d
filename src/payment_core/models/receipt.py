"""Receipt and Merchant-of-Record report models."""

import datetime as dt

from pydantic import BaseModel, Field


class BusinessDetails(BaseModel):
    """Issuing business as printed on receipts."""

    name: str = ""
    address: str = ""
    tax_id: str = ""
    email: str = ""


class CustomerDetails(BaseModel):
    """Customer block of a receipt."""

    name: str | None = None
    email: str | None = None
    address: str | None = None


class TaxInfo(BaseModel):
    """Tax line of a receipt. Rate is a percentage."""

    rate: float = 0
    amount: float = 0
    type: str = "No Tax"


class Receipt(BaseModel):
    """Receipt issued for a ledger transaction."""

    id: str
    transaction_id: str
    amount: float
    currency: str
    issued_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
    business_details: BusinessDetails
    customer_details: CustomerDetails | None = None
    tax_info: TaxInfo = Field(default_factory=TaxInfo)


class ComplianceResult(BaseModel):
    valid: bool
    issues: list[str] = Field(default_factory=list)


class CurrencyBreakdown(BaseModel):
    count: int = 0
    amount: float = 0
    tax: float = 0


class MoRReport(BaseModel):
    """Merchant-of-Record compliance report over a set of transactions."""

    total_transactions: int = 0
    total_amount: float = 0
    total_tax: float = 0
    currency_breakdown: dict[str, CurrencyBreakdown] = Field(default_factory=dict)
    compliance_issues: list[str] = Field(default_factory=list)
