"""PriceCatalogEntry + PriceCatalogRegister — the cooperative's price rules.

An entry is a versioned set of per-kg prices: a base price, a premium per
quality grade and a list of certification premiums.  At most one entry is
active at a time.

The register is a single row (id=1) naming the active entry.  Activation
swaps that row and flips the entry status flags in one transaction, so the
"one active entry" rule is never left to a batch-update convention.

Lifecycle:  inactive ⇄ active
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from coopbilling.database import Base

REGISTER_ID = 1


class PriceCatalogEntry(Base):
    __tablename__ = "price_catalog_entries"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Prices (currency per kg) ─────────────────────────────
    base_price: Mapped[float] = mapped_column(Float, nullable=False)
    # {"A": 50, "B": 25, "C": 0}
    quality_premiums: Mapped[dict] = mapped_column(JSON, default=dict)
    # [{"name": "Organic", "premium": 20}, ...]
    certifications: Mapped[list] = mapped_column(JSON, default=list)

    effective_date: Mapped[date] = mapped_column(Date, default=date.today)

    # ── Status ───────────────────────────────────────────────
    # active | inactive
    status: Mapped[str] = mapped_column(String(20), default="inactive", index=True)

    # ── Metadata ─────────────────────────────────────────────
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class PriceCatalogRegister(Base):
    __tablename__ = "price_catalog_register"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=REGISTER_ID)
    active_entry_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("price_catalog_entries.id")
    )
    activated_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
