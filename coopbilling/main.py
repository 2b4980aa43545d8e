from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coopbilling.config import settings
from coopbilling.middleware.exceptions import register_exception_handlers
from coopbilling.routers import health, invoices, payments, price_catalog, reconciliation
from coopbilling.services.scheduler import lifespan

app = FastAPI(
    title="CoopBilling",
    description="Invoice & Valuation Reconciliation Engine for a producers' cooperative",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(price_catalog.router, prefix="/api/price-catalog", tags=["price-catalog"])
app.include_router(invoices.router, prefix="/api/invoices", tags=["invoices"])
app.include_router(payments.router, prefix="/api/payments", tags=["payments"])
app.include_router(reconciliation.router, prefix="/api/reconciliation", tags=["reconciliation"])
