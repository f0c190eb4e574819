import logging

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from backoffice.core.config import settings
from backoffice.core.errors import FulfillmentError
from backoffice.core.observability import (
    fulfillment_exception_handler,
    http_exception_handler,
    log_event,
    logger,
    request_logging_middleware,
    setup_observability,
    store_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from backoffice.db.session import engine
from backoffice.routers import finance, inventory, maintenance, orders, registry

app = FastAPI(
    title=settings.app_name,
    version="0.3.0",
    description=(
        "Back-office API for orders, warehouse stock and company ledgers.\n\n"
        "Swagger quick test flow:\n"
        "1. Obtain a bearer token from the auth provider (`sub` = user id, `role` = admin or salesperson).\n"
        "2. Click **Authorize** and paste the token.\n"
        "3. Create an order, then `POST /orders/{id}/complete`, `/returns`, `/payments` or `/cancel`."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "orders", "description": "Order lifecycle: complete, cancel, return, later payment, delete."},
        {"name": "inventory", "description": "Restock, manual reductions and stock history."},
        {"name": "finance", "description": "Ledger entries, withdrawals and balance summaries."},
        {"name": "registry", "description": "Companies, warehouses and products."},
        {"name": "maintenance", "description": "Batch clean-up jobs."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(FulfillmentError, fulfillment_exception_handler)
app.add_exception_handler(SQLAlchemyError, store_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Local front-end tooling runs on dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(registry.router)
app.include_router(orders.router)
app.include_router(inventory.router)
app.include_router(finance.router)
app.include_router(maintenance.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        log_event(logger, logging.WARNING, "readiness_check_failed", error=str(exc))
        return {"ok": False}
    return {"ok": True}
