"""HTTP middleware."""

from .correlation import CORRELATION_ID_HEADER, CorrelationIdMiddleware
from .security_headers import SecurityHeadersMiddleware

__all__ = ["CORRELATION_ID_HEADER", "CorrelationIdMiddleware", "SecurityHeadersMiddleware"]
