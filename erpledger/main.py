import logging

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from erpledger.core.config import settings
from erpledger.core.errors import DomainError
from erpledger.core.observability import (
    domain_error_handler,
    http_exception_handler,
    log_event,
    logger,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from erpledger.db.session import engine
from erpledger.routers import (
    audit,
    auth,
    categories,
    invoices,
    orders,
    partners,
    payments,
    products,
    stock,
    team,
    warehouses,
)

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Multi-tenant ERP backend: stock ledger, orders, invoices and payments.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /auth/register` to create a company and its admin.\n"
        "2. Click **Authorize** and use your email + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Create a warehouse and a product, then post `/stock-movements` and read `/stock`."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "Registration, login and token lifecycle."},
        {"name": "team", "description": "Company members and their roles."},
        {"name": "warehouses", "description": "Warehouses that hold stock."},
        {"name": "categories", "description": "Product categories, nested by parent."},
        {"name": "products", "description": "Product and service catalog."},
        {"name": "customers", "description": "Customers for sales orders."},
        {"name": "suppliers", "description": "Suppliers for purchase orders."},
        {"name": "stock", "description": "Stock movement log, derived stock levels, transfers and recalculation."},
        {"name": "orders", "description": "Sales and purchase orders, reservations and fulfillment."},
        {"name": "invoices", "description": "Invoices, balances and status."},
        {"name": "payments", "description": "Payments and invoice reconciliation."},
        {"name": "audit", "description": "Audit trail of every mutation."},
    ],
)

setup_observability(settings.log_level)
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(DomainError, domain_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if not allow_origin_regex and env_value in {"dev", "development", "staging", "stage"}:
    # Local tooling runs on dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(team.router)
app.include_router(warehouses.router)
app.include_router(categories.router)
app.include_router(products.router)
app.include_router(partners.customers_router)
app.include_router(partners.suppliers_router)
app.include_router(stock.router)
app.include_router(orders.router)
app.include_router(invoices.router)
app.include_router(payments.router)
app.include_router(audit.router)


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
        log_event(logger, "readiness_failed", level=logging.WARNING, error=str(exc))
        return JSONResponse(status_code=503, content={"ok": False, "database": "unavailable"})
    return {"ok": True, "database": "ok"}
