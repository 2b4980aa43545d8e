"""StockLot — a quantified, graded batch of product held for a producer.

Stock lots are created by the external stock registry (collections → lots).
This service only patches the five derived fields: price_per_ton,
total_cost, amount_paid, payment_status and updated_at.

A lot merged into another one by the registry carries is_combined=True and
combined_into_stock=<consuming lot id>; from then on it is never invoiced
and never receives payments.

Payment lifecycle:  pending → partial → completed
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from coopbilling.database import Base


class StockLot(Base):
    __tablename__ = "stock_lots"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stock_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    producer_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── Quantities (tons) ────────────────────────────────────
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    # Frozen at creation; valuation and invoicing use it
    original_quantity: Mapped[float | None] = mapped_column(Float)
    # A | B | C
    quality: Mapped[str] = mapped_column(String(1), nullable=False)

    # ── Derived valuation (integer currency units) ──────────
    price_per_ton: Mapped[int] = mapped_column(Integer, default=0)
    total_cost: Mapped[int] = mapped_column(Integer, default=0)

    # ── Payment ──────────────────────────────────────────────
    amount_paid: Mapped[int] = mapped_column(Integer, default=0)
    # pending | partial | completed
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)

    # ── Combination (set by the stock registry) ──────────────
    is_combined: Mapped[bool] = mapped_column(Boolean, default=False)
    combined_into_stock: Mapped[str | None] = mapped_column(String(36))

    # ── Metadata ─────────────────────────────────────────────
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    # Compare-and-set counter: a write against a stale row raises StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_consumed(self) -> bool:
        """True once the lot has been merged into another lot."""
        return bool(self.is_combined and self.combined_into_stock)

    @property
    def invoiced_quantity(self) -> float:
        return self.original_quantity or self.quantity or 0.0

    @property
    def remaining_balance(self) -> int:
        return max((self.total_cost or 0) - (self.amount_paid or 0), 0)


class StockLotPayment(Base):
    """Journal of payments applied to a stock lot.

    Written in the same commit as the lot's amount_paid, so the lot never
    holds a payment the journal does not know about.  invoice_id stays
    empty until the payment is on the invoice too; an entry without one is
    a payment the invoice still owes.  payment_id is chosen by the caller
    and makes a resubmitted payment finish the first attempt instead of
    paying twice.
    """

    __tablename__ = "stock_lot_payments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    payment_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    stock_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_lots.id"), nullable=False, index=True
    )

    paid_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    # cash | bank_transfer | mobile_money
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    # ── Invoice side (empty until recorded there) ───────────
    invoice_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("invoices.id"), index=True
    )
    recorded_on_invoice_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    @property
    def is_on_invoice(self) -> bool:
        return self.invoice_id is not None
