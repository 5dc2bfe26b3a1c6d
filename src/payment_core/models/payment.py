"""Checkout request and result models."""

from pydantic import BaseModel, Field

from .enums import Currency
from .errors import ErrorRecord


class PaymentFormData(BaseModel):
    """Customer-submitted checkout form.

    Deliberately loose: the gateway performs its own validation and reports
    failures as a result rather than a pydantic error.
    """

    amount: float = Field(..., description="Amount in major units")
    currency: Currency | str = Field(..., description="Currency code")
    customer_email: str = Field(..., description="Customer email address")
    customer_name: str = Field(..., description="Customer full name")
    description: str | None = Field(default=None, description="Service description")


class FieldError(BaseModel):
    """UI-level validation message bound to a form field."""

    field: str
    message: str


class PaymentResult(BaseModel):
    """Outcome of a payment attempt."""

    success: bool
    transaction_id: str | None = None
    error: str | None = None
    checkout_url: str | None = None
    error_record: ErrorRecord | None = None
    field_errors: list[FieldError] = Field(default_factory=list)
