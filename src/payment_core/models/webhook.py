"""Lemon Squeezy webhook envelope and processing result models."""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WebhookMeta(BaseModel):
    """``meta`` block of a webhook delivery."""

    model_config = ConfigDict(extra="allow")

    event_name: str = Field(..., description="Processor event name")
    custom_data: dict[str, Any] | None = Field(
        default=None, description="Checkout custom data echoed back by the processor"
    )
    webhook_id: str | None = Field(
        default=None, description="Processor delivery ID, when provided"
    )


class WebhookAttributes(BaseModel):
    """Order or subscription attributes."""

    model_config = ConfigDict(extra="allow")

    status: str | None = None
    total: int = Field(default=0, description="Total in minor units")
    currency: str = Field(default="USD", description="Currency code")
    customer_email: str | None = None


class WebhookData(BaseModel):
    """``data`` block of a webhook delivery."""

    model_config = ConfigDict(extra="allow")

    type: str
    id: str
    attributes: WebhookAttributes

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)


class LemonSqueezyWebhookPayload(BaseModel):
    """Full webhook envelope: ``{meta, data}``."""

    model_config = ConfigDict(extra="allow")

    meta: WebhookMeta
    data: WebhookData


class WebhookEvent(BaseModel):
    """Flattened view of a webhook delivery. Never persisted on its own."""

    event_name: str
    custom_data: dict[str, Any] = Field(default_factory=dict)
    resource_id: str
    status: str | None = None
    total_minor_units: int = 0
    currency: str = "USD"
    customer_email: str | None = None
    webhook_id: str | None = None

    @property
    def transaction_id(self) -> str | None:
        """Correlation ID set at checkout creation, if echoed back."""
        value = self.custom_data.get("transaction_id")
        return str(value) if value else None

    @property
    def amount(self) -> float:
        """Total in major units."""
        return self.total_minor_units / 100

    @classmethod
    def from_payload(cls, payload: LemonSqueezyWebhookPayload) -> "WebhookEvent":
        attributes = payload.data.attributes
        return cls(
            event_name=payload.meta.event_name,
            custom_data=payload.meta.custom_data or {},
            resource_id=payload.data.id,
            status=attributes.status,
            total_minor_units=attributes.total,
            currency=attributes.currency.upper(),
            customer_email=attributes.customer_email,
            webhook_id=payload.meta.webhook_id,
        )


class WebhookResult(BaseModel):
    """Outcome of handling one webhook delivery."""

    success: bool
    message: str
    event_name: str | None = None
    transaction_id: str | None = None
    duplicate: bool = False


class WebhookStats(BaseModel):
    """Counters over webhook deliveries handled by this instance."""

    total_events: int = 0
    events_by_type: dict[str, int] = Field(default_factory=dict)
    last_event_time: dt.datetime | None = None
    rejected_signatures: int = 0
    duplicates: int = 0
