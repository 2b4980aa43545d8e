"""Invoice registry — one invoice per eligible stock lot, created lazily.

ensure(lot) is the only way an invoice comes into existence:

  - consumed lot (combined into another)    → None, logged
  - no price data (price_per_ton/total_cost) → None, logged
  - invoice already exists                  → that invoice, untouched
  - otherwise                               → new invoice with frozen terms

Check-then-create is guarded twice.  Within a process a per-lot asyncio
lock serializes the lookup and the insert.  Across processes the unique
index on invoices.stock_id rejects the second insert; the loser rolls back,
re-reads and returns the winner's invoice, so every caller sees the same
single invoice.

Frozen terms come from the lot as stored when the invoice is created, read
again under the lot's lock: a snapshot the caller took earlier may predate a
revaluation.  Quantity is the original tonnage (current tonnage if the
registry never recorded one), total_amount = price_per_ton × quantity.
amount_paid is seeded from the lot, less the journal payments that are not
on an invoice yet; the payment processor appends those afterwards.  The
per-kg breakdown is copied from the active catalog entry when that entry
reproduces the lot's price_per_ton; otherwise the whole price is recorded
as base price with no premiums.
"""

import asyncio
import logging
from datetime import date, timedelta

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coopbilling.config import settings
from coopbilling.middleware.exceptions import (
    InvalidStockLotError,
    InvariantViolationError,
    PersistenceError,
    ResourceNotFoundError,
)
from coopbilling.models.invoice import Invoice
from coopbilling.models.stock_lot import StockLot, StockLotPayment
from coopbilling.schemas.stock_lot import StockLotSnapshot
from coopbilling.services.price_catalog import get_active_terms
from coopbilling.services.valuation import compute_valuation, derive_payment_status, invoice_total
from coopbilling.utils.cache import cached, invalidate_cache
from coopbilling.utils.locks import stock_lot_locks
from coopbilling.utils.numbering import generate_invoice_number

logger = logging.getLogger("coopbilling.invoices")

SKIP_COMBINED = "combined"
SKIP_MISSING_PRICE = "missing_price_data"


# ── Stock lots ───────────────────────────────────────────────

async def get_stock_lot(db: AsyncSession, stock_id: str) -> StockLot:
    """The stored lot, refreshed even if the session already holds it."""
    result = await db.execute(
        select(StockLot)
        .where(StockLot.id == stock_id)
        .execution_options(populate_existing=True)
    )
    lot = result.scalar_one_or_none()
    if lot is None:
        raise ResourceNotFoundError("Stock lot", stock_id)
    return lot


def snapshot_of(lot: StockLot) -> StockLotSnapshot:
    try:
        return StockLotSnapshot.model_validate(lot)
    except ValidationError as exc:
        logger.warning("Stock %s has an invalid record: %s", lot.id, exc)
        raise InvalidStockLotError(lot.id, exc.error_count()) from exc


async def current_snapshot(db: AsyncSession, stock_id: str) -> StockLotSnapshot:
    return snapshot_of(await get_stock_lot(db, stock_id))


def ineligibility_reason(lot: StockLotSnapshot) -> str | None:
    """Why `lot` cannot be invoiced, or None when it can."""
    if lot.is_consumed:
        return SKIP_COMBINED
    if not lot.is_priced:
        return SKIP_MISSING_PRICE
    return None


async def find_invoice_for_stock(db: AsyncSession, stock_id: str) -> Invoice | None:
    """The invoice of `stock_id`.  Two or more is a violation, never a choice."""
    result = await db.execute(
        select(Invoice)
        .where(Invoice.stock_id == stock_id)
        .execution_options(populate_existing=True)
    )
    invoices = list(result.scalars().all())
    if len(invoices) > 1:
        numbers = ", ".join(inv.invoice_number for inv in invoices)
        logger.critical("Stock lot %s has %d invoices: %s", stock_id, len(invoices), numbers)
        raise InvariantViolationError(
            f"Stock lot {stock_id} has {len(invoices)} invoices ({numbers})"
        )
    return invoices[0] if invoices else None


async def get_invoice(db: AsyncSession, invoice_id: str) -> Invoice:
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        raise ResourceNotFoundError("Invoice", invoice_id)
    return invoice


async def _frozen_terms(db: AsyncSession, lot: StockLotSnapshot) -> dict:
    quantity = lot.invoiced_quantity
    terms = {
        "quantity": quantity,
        "price_per_ton": lot.price_per_ton,
        "total_amount": invoice_total(lot.price_per_ton, quantity),
        "base_price": lot.price_per_ton / 1000,
        "quality_premium": 0.0,
        "certification_premiums": 0.0,
        "price_catalog_entry_id": None,
    }

    catalog = await get_active_terms(db)
    valuation = compute_valuation(catalog, lot.quality, quantity)
    if valuation.is_priced and valuation.price_per_ton == lot.price_per_ton:
        terms.update(
            base_price=valuation.base_price,
            quality_premium=valuation.quality_premium,
            certification_premiums=valuation.certification_premiums,
            price_catalog_entry_id=valuation.entry_id,
        )
    return terms


async def unrecorded_payments(db: AsyncSession, stock_id: str) -> list[StockLotPayment]:
    """Journal payments already on the lot but not yet on its invoice, oldest first."""
    result = await db.execute(
        select(StockLotPayment)
        .where(
            StockLotPayment.stock_id == stock_id,
            StockLotPayment.invoice_id == None,  # noqa: E711
        )
        .order_by(StockLotPayment.created_at, StockLotPayment.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _opening_payment_state(db: AsyncSession, lot: StockLotSnapshot, total_amount: int) -> tuple[int, str]:
    """amount_paid / payment_status a new invoice starts from."""
    pending = sum(p.amount for p in await unrecorded_payments(db, lot.id))
    if not pending:
        return lot.amount_paid, lot.payment_status
    opening = max(lot.amount_paid - pending, 0)
    return opening, derive_payment_status(opening, total_amount)


async def _insert_invoice(db: AsyncSession, lot: StockLotSnapshot) -> tuple[Invoice, bool]:
    """Insert the lot's invoice, resolving races through the unique indexes."""
    issue_date = date.today()
    terms = await _frozen_terms(db, lot)
    amount_paid, payment_status = await _opening_payment_state(db, lot, terms["total_amount"])

    for attempt in range(settings.invoice_number_attempts):
        invoice = Invoice(
            invoice_number=await generate_invoice_number(db, issue_date, attempt),
            stock_id=lot.id,
            stock_number=lot.stock_number,
            producer_id=lot.producer_id,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=settings.invoice_due_days),
            quality=lot.quality,
            amount_paid=amount_paid,
            payment_status=payment_status,
            payment_history=[],
            notes=lot.notes,
            **terms,
        )
        db.add(invoice)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            existing = await find_invoice_for_stock(db, lot.id)
            if existing is not None:
                logger.info(
                    "Invoice for stock %s was created concurrently (%s)",
                    lot.stock_number, existing.invoice_number,
                )
                return existing, False
            logger.info("Invoice number %s taken, retrying", invoice.invoice_number)
            continue
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to create invoice for stock %s", lot.stock_number)
            raise PersistenceError(f"Failed to create invoice for stock {lot.id}") from exc

        logger.info(
            "Created invoice %s for stock %s (%d)",
            invoice.invoice_number, lot.stock_number, invoice.total_amount,
        )
        await invalidate_cache("invoices:*")
        return invoice, True

    raise PersistenceError(
        f"Could not allocate an invoice number for stock {lot.id} "
        f"after {settings.invoice_number_attempts} attempts"
    )


async def ensure_while_locked(db: AsyncSession, stock_id: str) -> tuple[Invoice | None, bool]:
    """ensure() for a caller that already holds the lot's stock_lot_locks slot.

    The lot is read again here, so the terms are frozen from its current
    valuation whatever the caller saw before taking the lock.

    Returns (invoice or None, created by this call).
    """
    lot = await current_snapshot(db, stock_id)
    reason = ineligibility_reason(lot)
    if reason is not None:
        logger.info("Stock %s not invoiceable: %s", lot.stock_number, reason)
        return None, False

    existing = await find_invoice_for_stock(db, lot.id)
    if existing is not None:
        return existing, False
    return await _insert_invoice(db, lot)


async def ensure_with_status(db: AsyncSession, lot: StockLotSnapshot) -> tuple[Invoice | None, bool]:
    """ensure(), also reporting whether this call created the invoice."""
    async with stock_lot_locks.hold(lot.id):
        return await ensure_while_locked(db, lot.id)


async def ensure(db: AsyncSession, lot: StockLotSnapshot) -> Invoice | None:
    """The lot's invoice, created if missing.  None for ineligible lots."""
    invoice, _created = await ensure_with_status(db, lot)
    return invoice


async def ensure_all(
    db: AsyncSession,
    lots: list[StockLotSnapshot],
    cancel_event: asyncio.Event | None = None,
) -> int:
    """ensure() every lot; returns how many invoices this call created.

    A lot that has since disappeared or stopped validating is logged and
    skipped; the rest of the sweep goes on.
    """
    created = 0
    for lot in lots:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Invoice sweep cancelled after %d new invoices", created)
            break
        try:
            _invoice, was_created = await ensure_with_status(db, lot)
        except (InvalidStockLotError, ResourceNotFoundError) as exc:
            logger.warning("Stock %s not invoiced: %s", lot.stock_number, exc.message)
            continue
        if was_created:
            created += 1
    return created


# ── Queries ──────────────────────────────────────────────────

async def list_invoices(
    db: AsyncSession,
    status: str | None = None,
    producer_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Invoice], int]:
    """Invoices newest first.  status may also be "overdue" (derived)."""
    stmt = select(Invoice)
    if producer_id:
        stmt = stmt.where(Invoice.producer_id == producer_id)
    if status == "overdue":
        stmt = stmt.where(
            Invoice.payment_status != "completed",
            Invoice.due_date < date.today(),
        )
    elif status:
        stmt = stmt.where(Invoice.payment_status == status)

    total = (
        await db.execute(select(func.count()).select_from(stmt.subquery()))
    ).scalar() or 0

    result = await db.execute(
        stmt.order_by(Invoice.issue_date.desc(), Invoice.invoice_number.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


@cached(ttl=settings.stats_cache_ttl, prefix="invoices")
async def invoice_stats(db: AsyncSession) -> dict:
    """Totals across all invoices, in whole currency units."""
    today = date.today()
    result = await db.execute(select(Invoice))
    invoices = list(result.scalars().all())

    by_status: dict[str, int] = {"pending": 0, "partial": 0, "completed": 0}
    total_invoiced = total_paid = total_overdue = overdue_count = 0
    payment_days: list[int] = []

    for inv in invoices:
        by_status[inv.payment_status] = by_status.get(inv.payment_status, 0) + 1
        total_invoiced += inv.total_amount
        total_paid += inv.amount_paid
        if inv.is_overdue(today):
            overdue_count += 1
            total_overdue += inv.balance_due
        if inv.payment_status == "completed" and inv.payment_history:
            settled_on = inv.payment_history[-1].paid_at.date()
            payment_days.append(max((settled_on - inv.issue_date).days, 0))

    return {
        "invoice_count": len(invoices),
        "total_invoiced": total_invoiced,
        "total_paid": total_paid,
        "total_outstanding": max(total_invoiced - total_paid, 0),
        "total_overdue": total_overdue,
        "overdue_count": overdue_count,
        "by_status": by_status,
        "average_days_to_payment": (
            round(sum(payment_days) / len(payment_days), 1) if payment_days else None
        ),
    }
