"""FastAPI application for the payment core REST API.

This package provides REST endpoints for:
- Payment sessions and checkout creation
- Lemon Squeezy webhooks
- Ledger administration (transactions, export, receipts, statistics)
"""

import datetime as dt
import logging
import os
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from payment_core.api.exceptions import register_exception_handlers
from payment_core.api.middleware import CorrelationIdMiddleware, SecurityHeadersMiddleware
from payment_core.api.routes.payments import router as payments_router
from payment_core.api.routes.transactions import router as transactions_router
from payment_core.api.routes.webhooks import router as webhooks_router
from payment_core.utils.logging import configure_logging

logger = logging.getLogger(__name__)
configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

app = FastAPI(
    title="Payment Core API",
    description="Checkout, webhook and ledger endpoints for Lemon Squeezy payments",
    version="0.1.0",
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(
    SecurityHeadersMiddleware,
    enforce_https=os.environ.get("PAYMENT_ENFORCE_HTTPS", "false").lower() in ("1", "true", "yes"),
)
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

# Routers live under /api, matching the CloudFront /api/* behaviour
app.include_router(payments_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")
app.include_router(transactions_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": dt.datetime.now(dt.UTC).isoformat(),
        "service": "payment-core-api",
    }


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the API with uvicorn (install the ``server`` extra).

    Args:
        host: Host to bind to.
        port: Port to listen on.
        reload: Enable hot reload for development.
    """
    import uvicorn

    if reload:
        uvicorn.run("payment_core.api.main:app", host=host, port=port, reload=True)
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
