"""Pydantic schemas for invoices and their payment history."""

from datetime import date, datetime

from pydantic import BaseModel


class PaymentRecordOut(BaseModel):
    sequence: int
    paid_at: datetime
    amount: int
    method: str
    reference: str | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}


class InvoiceOut(BaseModel):
    id: str
    invoice_number: str
    stock_id: str
    stock_number: str | None = None
    producer_id: str
    issue_date: date
    due_date: date
    quantity: float
    quality: str
    base_price: float
    quality_premium: float
    certification_premiums: float
    price_per_ton: int
    total_amount: int
    amount_paid: int
    balance_due: int
    payment_status: str
    payment_history: list[PaymentRecordOut] = []
    notes: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class EnsureInvoiceOut(BaseModel):
    """Result of ensuring one stock lot has its invoice.

    invoice is None when the lot is ineligible; skipped_reason says why
    ("combined" or "missing_price_data").
    """
    stock_id: str
    invoice: InvoiceOut | None = None
    created: bool = False
    skipped_reason: str | None = None


class InvoiceStats(BaseModel):
    invoice_count: int
    total_invoiced: int
    total_paid: int
    total_outstanding: int
    total_overdue: int
    overdue_count: int
    by_status: dict[str, int]
    average_days_to_payment: float | None = None
