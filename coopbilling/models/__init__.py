"""Aggregate model imports for Alembic auto-detection."""

# Stock registry (external owner, patched here)
from coopbilling.models.stock_lot import StockLot, StockLotPayment  # noqa: F401

# Pricing
from coopbilling.models.price_catalog import PriceCatalogEntry, PriceCatalogRegister  # noqa: F401

# Invoicing
from coopbilling.models.invoice import Invoice, InvoicePayment  # noqa: F401

# Reconciliation
from coopbilling.models.reconciliation_alert import ReconciliationAlert  # noqa: F401
