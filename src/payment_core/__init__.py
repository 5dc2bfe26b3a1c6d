"""Transaction and security core for a Lemon Squeezy hosted checkout."""

from payment_core.config import PaymentSettings, get_payment_settings
from payment_core.context import PaymentCore, get_payment_core, reset_payment_core

__all__ = [
    "PaymentCore",
    "PaymentSettings",
    "get_payment_core",
    "get_payment_settings",
    "reset_payment_core",
]

__version__ = "0.1.0"
