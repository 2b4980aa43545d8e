"""Invoice — the billing record for one stock lot.

Created exactly once per stock lot, lazily, by the invoice registry, and
never deleted.  The monetary terms (quantity, per-kg breakdown,
price_per_ton, total_amount) are frozen at creation and are not revised
when the price catalog changes later.  Only amount_paid, payment_status and
the payment history move after creation.

stock_id carries a unique index: the store itself rejects a second invoice
for the same lot.

Lifecycle:  pending → partial → completed
"""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Date, DateTime, Float, ForeignKey, Integer,
    String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coopbilling.database import Base


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    invoice_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )

    # ── Stock lot link (one invoice per lot) ─────────────────
    stock_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_lots.id"), unique=True, nullable=False, index=True
    )
    stock_number: Mapped[str | None] = mapped_column(String(50))
    producer_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── Dates ────────────────────────────────────────────────
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # ── Frozen terms ─────────────────────────────────────────
    quantity: Mapped[float] = mapped_column(Float, nullable=False)  # tons
    quality: Mapped[str] = mapped_column(String(1), nullable=False)
    # Per-kg breakdown
    base_price: Mapped[float] = mapped_column(Float, nullable=False)
    quality_premium: Mapped[float] = mapped_column(Float, default=0.0)
    certification_premiums: Mapped[float] = mapped_column(Float, default=0.0)
    price_per_ton: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    # Catalog entry the breakdown came from (None when it could not be matched)
    price_catalog_entry_id: Mapped[str | None] = mapped_column(String(36))

    # ── Payment (mirrors the stock lot) ──────────────────────
    amount_paid: Mapped[int] = mapped_column(Integer, default=0)
    # pending | partial | completed
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)

    # ── Metadata ─────────────────────────────────────────────
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # ── Relationships ────────────────────────────────────────
    payment_history = relationship(
        "InvoicePayment",
        back_populates="invoice",
        order_by="InvoicePayment.sequence",
        lazy="selectin",
        cascade="save-update, merge",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def balance_due(self) -> int:
        return max((self.total_amount or 0) - (self.amount_paid or 0), 0)

    def is_overdue(self, today: date | None = None) -> bool:
        today = today or date.today()
        return self.payment_status != "completed" and self.due_date < today


class InvoicePayment(Base):
    """One entry of an invoice's payment history.  Append-only."""

    __tablename__ = "invoice_payments"
    __table_args__ = (
        UniqueConstraint("invoice_id", "sequence", name="uq_invoice_payments_sequence"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    paid_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    # cash | bank_transfer | mobile_money
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    invoice = relationship("Invoice", back_populates="payment_history")
