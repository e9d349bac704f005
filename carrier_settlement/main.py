"""Carrier Settlement Engine - Main Application."""

import logging.config

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from carrier_settlement.api.routes import balances, orders, payments, settlements
from carrier_settlement.core.config import settings
from carrier_settlement.core.database import Base, engine
from carrier_settlement.core.errors import ErrorCode, LedgerError, LedgerValidationError
from carrier_settlement.core.logging import setup_logging
from carrier_settlement.core.logging_config import LOGGING_CONFIG

# Register every model on Base.metadata before create_all
import carrier_settlement.models  # noqa: F401

# Configure logging before anything else
logging.config.dictConfig(LOGGING_CONFIG)
logger = setup_logging(settings.log_level)

# Create all tables on startup
logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("Database tables ready")

# -- OpenAPI tag metadata for Swagger grouping --
tags_metadata = [
    {
        "name": "Health",
        "description": "Service health and readiness checks.",
    },
    {
        "name": "Settlements",
        "description": (
            "Settle a carrier's delivered and failed orders, either for a whole "
            "day or for an explicit order list, and browse stored settlements "
            "and what is still pending."
        ),
    },
    {
        "name": "Payments",
        "description": (
            "Register cash transfers between the store and its carriers and "
            "apply them to settlements and ledger movements."
        ),
    },
    {
        "name": "Delivery Events",
        "description": (
            "Hooks for the order-lifecycle service: book ledger movements when "
            "an order is delivered, fails, or changes delivery status."
        ),
    },
    {
        "name": "Balances",
        "description": (
            "Read-only carrier balances and unsettled movements, computed from "
            "the ledger on every request."
        ),
    },
]


app = FastAPI(
    title="Carrier Settlement Engine",
    description=(
        "## Carrier Account Reconciliation API\n\n"
        "Tracks what couriers owe a store for cash collected on delivery and "
        "what the store owes couriers for completed and failed deliveries.\n\n"
        "### Movement Types\n"
        "| Type | Sign | Meaning |\n"
        "|------|------|---------|\n"
        "| `cod_collected` | + | Cash the carrier collected |\n"
        "| `delivery_fee` | - | Fee for a delivered order |\n"
        "| `failed_attempt_fee` | - | Fee for a failed attempt |\n"
        "| `payment_received` | - | Carrier paid the store |\n"
        "| `payment_sent` | + | Store paid the carrier |\n"
        "| `adjustment_credit` / `adjustment_debit` | - / + | Manual corrections |\n\n"
        "Positive balances mean the carrier owes the store.\n\n"
        "### Quick Start\n"
        "```bash\n"
        "# 1. An order was delivered\n"
        "curl -X POST /api/v1/orders/<order_id>/delivered\n\n"
        "# 2. Settle the carrier's day\n"
        'curl -X POST /api/v1/settlements/batch -H "Content-Type: application/json" '
        '-d \'{"store_id":"...","carrier_id":"...","settlement_date":"2024-03-01",'
        '"total_amount_collected":"250.00"}\'\n\n'
        "# 3. Register the carrier's payment\n"
        'curl -X POST /api/v1/payments -H "Content-Type: application/json" '
        '-d \'{"store_id":"...","carrier_id":"...","amount":"210.00",'
        '"direction":"from_carrier","payment_method":"cash","settlement_ids":["..."]}\'\n'
        "```\n"
    ),
    version="1.0.0",
    openapi_tags=tags_metadata,
    license_info={
        "name": "MIT",
    },
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Render engine errors as ``{"success": false, "error_code", "message"}``."""
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed requests in the same shape as engine errors."""
    fields = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
    names = ", ".join(f["field"] or "body" for f in fields)
    error = LedgerValidationError(
        ErrorCode.VALIDATION_ERROR,
        f"Invalid request: {names}",
        details={"fields": fields},
    )
    logger.warning("Request rejected: path=%s fields=%s", request.url.path, names)
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


app.include_router(settlements.router, prefix="/api/v1", tags=["Settlements"])
app.include_router(payments.router, prefix="/api/v1", tags=["Payments"])
app.include_router(orders.router, prefix="/api/v1", tags=["Delivery Events"])
app.include_router(balances.router, prefix="/api/v1", tags=["Balances"])

logger.info("Carrier Settlement API ready - routes registered")


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint.

    Returns a simple JSON object confirming the service is running.
    Useful for load balancers and monitoring systems.
    """
    return {"status": "healthy", "service": "carrier-settlement"}
