"""Runtime configuration for the payment core.

Non-secret settings come from environment variables. Secrets may also be
given as environment variables for local development; otherwise services
fetch them lazily from SSM Parameter Store under ``/payments/{environment}/``.
"""

import os
from collections.abc import Mapping
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field

from .models.enums import SignatureScheme

DEFAULT_API_BASE_URL = "https://api.lemonsqueezy.com/v1"
DEFAULT_SITE_URL = "https://recoverysite.netlify.app"


def _env_bool(value: str | None, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class BusinessSettings(BaseModel):
    """Business details printed on receipts."""

    name: str = "Doctor Fix - File Recovery Services"
    address: str = "Israel"
    tax_id: str = "IL Company No."
    email: str = "doctorfix79@gmail.com"


class PaymentSettings(BaseModel):
    """Payment core settings."""

    environment: str = Field(default="dev", description="Deployment environment")
    api_base_url: str = Field(default=DEFAULT_API_BASE_URL)
    store_id: str = Field(default="", description="Lemon Squeezy store ID")
    variant_id: str | None = Field(
        default=None, description="Fixed variant to attach to checkouts, if any"
    )
    success_url: str = Field(default=f"{DEFAULT_SITE_URL}/payment-success")
    cancel_url: str = Field(default=f"{DEFAULT_SITE_URL}/payment-cancel")
    error_url: str = Field(default=f"{DEFAULT_SITE_URL}/payment-error")
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Secrets; None means "resolve from SSM"
    api_key: str | None = None
    webhook_secret: str | None = None
    access_token: str | None = None
    token_signing_key: str | None = None

    signature_scheme: SignatureScheme = SignatureScheme.HMAC_SHA256
    deduplicate_webhooks: bool = False

    ssm_enabled: bool = Field(
        default=True, description="Resolve missing secrets from SSM Parameter Store"
    )

    storage_backend: Literal["memory", "dynamodb"] = "memory"
    dynamodb_table: str | None = None

    error_report_url: str | None = Field(
        default=None, description="Endpoint receiving medium+ severity error reports"
    )
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=2.0, ge=0)
    retry_checkout: bool = Field(
        default=True, description="Retry transient checkout-creation failures"
    )

    business: BusinessSettings = Field(default_factory=BusinessSettings)

    @property
    def table_name(self) -> str:
        return self.dynamodb_table or f"payment-core-{self.environment}-kv"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PaymentSettings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Returns:
            PaymentSettings with defaults for anything unset.
        """
        env = os.environ if environ is None else environ

        values: dict = {
            "environment": env.get("ENVIRONMENT", "dev"),
            "api_base_url": env.get("LEMONSQUEEZY_API_BASE_URL", DEFAULT_API_BASE_URL),
            "store_id": env.get("LEMONSQUEEZY_STORE_ID", ""),
            "variant_id": env.get("LEMONSQUEEZY_VARIANT_ID") or None,
            "api_key": env.get("LEMONSQUEEZY_API_KEY") or None,
            "webhook_secret": env.get("LEMONSQUEEZY_WEBHOOK_SECRET") or None,
            "access_token": env.get("PAYMENT_ACCESS_TOKEN") or None,
            "token_signing_key": env.get("PAYMENT_TOKEN_SIGNING_KEY") or None,
            "deduplicate_webhooks": _env_bool(env.get("PAYMENT_DEDUPLICATE_WEBHOOKS")),
            "ssm_enabled": _env_bool(env.get("PAYMENT_SSM_ENABLED"), default=True),
            "storage_backend": env.get("PAYMENT_STORAGE_BACKEND", "memory"),
            "dynamodb_table": env.get("PAYMENT_DYNAMODB_TABLE") or None,
            "error_report_url": env.get("PAYMENT_ERROR_REPORT_URL") or None,
            "retry_checkout": _env_bool(env.get("PAYMENT_RETRY_CHECKOUT"), default=True),
        }

        optional = {
            "success_url": "PAYMENT_SUCCESS_URL",
            "cancel_url": "PAYMENT_CANCEL_URL",
            "error_url": "PAYMENT_ERROR_URL",
            "request_timeout_seconds": "PAYMENT_REQUEST_TIMEOUT_SECONDS",
            "signature_scheme": "LEMONSQUEEZY_SIGNATURE_SCHEME",
            "max_retries": "PAYMENT_MAX_RETRIES",
            "retry_base_delay_seconds": "PAYMENT_RETRY_BASE_DELAY_SECONDS",
        }
        for field_name, var in optional.items():
            if env.get(var):
                values[field_name] = env[var]

        business = {
            "name": env.get("BUSINESS_NAME"),
            "address": env.get("BUSINESS_ADDRESS"),
            "tax_id": env.get("BUSINESS_TAX_ID"),
            "email": env.get("BUSINESS_EMAIL"),
        }
        values["business"] = BusinessSettings(
            **{key: value for key, value in business.items() if value}
        )

        return cls.model_validate(values)


@lru_cache(maxsize=1)
def get_payment_settings() -> PaymentSettings:
    """Get settings for the current process (cached)."""
    return PaymentSettings.from_env()
