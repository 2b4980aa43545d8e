"""Payment processor — applies one payment to a stock lot and its invoice.

Order of writes (each committed on its own):

  1. stock lot   amount_paid += amount, status re-derived against total_cost,
                 and a journal entry for the payment, in the same commit
  2. invoice     created first if the lot has none yet (seeded with what the
                 lot had paid before the journal payments it still owes),
                 then every journal payment not yet on the invoice is
                 appended to its history and amount/status re-derived
                 against the invoice's frozen total_amount

The stock lot is always durable before the invoice is touched, so a failure
in step 2 leaves the lot as the source of truth and the journal entry open.
Nothing is rolled back across the two documents: any storage failure
surfaces as PersistenceError and the caller resubmits the same payment.
The journal makes that safe.  A payment_id already on the lot skips step 1
and only finishes step 2; a payment_id already on the invoice writes
nothing at all.  record_unfinished_payments() finishes open entries for
callers that never come back.

Payments against a lot that was combined into another lot are ignored (the
consuming lot is the one to pay).  Status only ever moves forward:
pending → partial → completed.
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coopbilling.middleware.exceptions import (
    CoopBillingException,
    InvalidPaymentError,
    PersistenceError,
    ResourceNotFoundError,
)
from coopbilling.models.invoice import Invoice, InvoicePayment
from coopbilling.models.stock_lot import StockLot, StockLotPayment
from coopbilling.schemas.payment import PAYMENT_METHODS, PaymentIn
from coopbilling.services.invoices import (
    ensure_while_locked,
    get_invoice,
    get_stock_lot,
    snapshot_of,
    unrecorded_payments,
)
from coopbilling.services.valuation import status_after_payment
from coopbilling.utils.cache import invalidate_cache
from coopbilling.utils.locks import stock_lot_locks, sweep_locks

logger = logging.getLogger("coopbilling.payments")


def validate_payment(payment: PaymentIn) -> None:
    """Reject malformed payments even if the caller skipped validation."""
    if payment.amount <= 0:
        raise InvalidPaymentError("Payment amount must be positive")
    if payment.method not in PAYMENT_METHODS:
        raise InvalidPaymentError(f"Unknown payment method: {payment.method}")


async def _commit(db: AsyncSession, what: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as exc:  # includes StaleDataError from the version check
        await db.rollback()
        logger.exception("Failed to save %s", what)
        raise PersistenceError(f"Failed to save {what}; retry the payment") from exc


async def get_journal_entry(db: AsyncSession, payment_id: str) -> StockLotPayment | None:
    result = await db.execute(
        select(StockLotPayment)
        .where(StockLotPayment.payment_id == payment_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _check_resubmission(entry: StockLotPayment, stock_id: str, payment: PaymentIn) -> None:
    if entry.stock_id != stock_id or entry.amount != payment.amount:
        raise InvalidPaymentError(
            f"Payment {payment.payment_id} was already used for {entry.amount} "
            f"on stock {entry.stock_id}"
        )


# ── Step 1: stock lot ────────────────────────────────────────

async def _record_on_lot(db: AsyncSession, lot: StockLot, payment: PaymentIn) -> StockLotPayment:
    entry = StockLotPayment(
        payment_id=payment.payment_id,
        stock_id=lot.id,
        paid_at=payment.date,
        amount=payment.amount,
        method=payment.method,
        reference=payment.reference or "",
        notes=payment.notes or "",
    )
    db.add(entry)
    lot.amount_paid = (lot.amount_paid or 0) + payment.amount
    lot.payment_status = status_after_payment(
        lot.payment_status, lot.amount_paid, lot.total_cost
    )
    await _commit(db, f"payment on stock {lot.stock_number}")
    return entry


# ── Step 2: invoice ──────────────────────────────────────────

async def _record_on_invoice(db: AsyncSession, invoice: Invoice, entry: StockLotPayment) -> None:
    invoice.payment_history.append(
        InvoicePayment(
            invoice_id=invoice.id,
            sequence=len(invoice.payment_history) + 1,
            paid_at=entry.paid_at,
            amount=entry.amount,
            method=entry.method,
            reference=entry.reference or "",
            notes=entry.notes or "",
        )
    )
    invoice.amount_paid = (invoice.amount_paid or 0) + entry.amount
    invoice.payment_status = status_after_payment(
        invoice.payment_status, invoice.amount_paid, invoice.total_amount
    )
    entry.invoice_id = invoice.id
    entry.recorded_on_invoice_at = datetime.utcnow()
    await _commit(db, f"payment on invoice {invoice.invoice_number}")


async def _settle_invoice(db: AsyncSession, stock_id: str) -> tuple[Invoice, bool, int]:
    """Bring the invoice level with the lot's journal.  Caller holds the lot lock.

    Returns (invoice, created by this call, journal entries recorded).
    """
    invoice, created = await ensure_while_locked(db, stock_id)
    if invoice is None:
        # Lot stopped being invoiceable after it accepted the payment
        raise ResourceNotFoundError("Invoice for stock lot", stock_id)
    if created:
        logger.info("Created invoice %s while recording payment", invoice.invoice_number)

    recorded = 0
    for entry in await unrecorded_payments(db, stock_id):
        await _record_on_invoice(db, invoice, entry)
        recorded += 1
    return invoice, created, recorded


# ── Entry points ─────────────────────────────────────────────

async def apply_payment(db: AsyncSession, stock_id: str, payment: PaymentIn) -> dict | None:
    """Apply `payment` to stock lot `stock_id` and to its invoice.

    Returns a summary of both documents after the payment, or None when the
    lot is combined into another lot and the payment was ignored.
    """
    validate_payment(payment)

    async with stock_lot_locks.hold(stock_id):
        lot = await get_stock_lot(db, stock_id)

        if lot.is_consumed:
            logger.info(
                "Ignoring payment of %d on stock %s: combined into %s",
                payment.amount, lot.stock_number, lot.combined_into_stock,
            )
            return None

        snapshot = snapshot_of(lot)
        entry = await get_journal_entry(db, payment.payment_id)
        if entry is not None:
            _check_resubmission(entry, stock_id, payment)

        if entry is not None and entry.is_on_invoice:
            logger.info("Payment %s already recorded on both documents", payment.payment_id)
            invoice = await get_invoice(db, entry.invoice_id)
            return _result(snapshot.amount_paid, snapshot.payment_status, invoice, payment,
                           invoice_created=False, replayed=True)

        if entry is None:
            if payment.amount > lot.remaining_balance:
                raise InvalidPaymentError(
                    f"Payment of {payment.amount} exceeds remaining balance "
                    f"{lot.remaining_balance} on stock {lot.stock_number}"
                )
            await _record_on_lot(db, lot, payment)
            stock_amount_paid, stock_status = lot.amount_paid, lot.payment_status
        else:
            logger.info(
                "Resuming payment %s on stock %s: stock lot already holds it",
                payment.payment_id, snapshot.stock_number,
            )
            stock_amount_paid, stock_status = snapshot.amount_paid, snapshot.payment_status

        invoice, invoice_created, _recorded = await _settle_invoice(db, stock_id)

    await invalidate_cache("invoices:*")
    logger.info(
        "Recorded payment %s of %d (%s) on stock %s / invoice %s",
        payment.payment_id, payment.amount, payment.method,
        snapshot.stock_number, invoice.invoice_number,
    )
    return _result(stock_amount_paid, stock_status, invoice, payment,
                   invoice_created=invoice_created)


def _result(stock_amount_paid: int, stock_status: str, invoice: Invoice, payment: PaymentIn,
            invoice_created: bool, replayed: bool = False) -> dict:
    return {
        "stock_id": invoice.stock_id,
        "payment_id": payment.payment_id,
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "amount": payment.amount,
        "stock_amount_paid": stock_amount_paid,
        "stock_payment_status": stock_status,
        "invoice_amount_paid": invoice.amount_paid,
        "invoice_payment_status": invoice.payment_status,
        "invoice_created": invoice_created,
        "replayed": replayed,
    }


async def record_unfinished_payments(
    db: AsyncSession,
    cancel_event: asyncio.Event | None = None,
) -> dict:
    """Finish step 2 for every journal payment that is on its lot only.

    Returns {"lots": int, "recorded": int, "failed": int, "cancelled": bool}.
    """
    async with sweep_locks.hold("payments"):
        result = await db.execute(
            select(StockLotPayment.stock_id)
            .where(StockLotPayment.invoice_id == None)  # noqa: E711
            .distinct()
        )
        stock_ids = list(result.scalars().all())
        summary = {"lots": len(stock_ids), "recorded": 0, "failed": 0, "cancelled": False}

        for stock_id in stock_ids:
            if cancel_event is not None and cancel_event.is_set():
                summary["cancelled"] = True
                break
            async with stock_lot_locks.hold(stock_id):
                try:
                    _invoice, _created, recorded = await _settle_invoice(db, stock_id)
                except CoopBillingException as exc:
                    logger.warning("Open payments on stock %s not recorded: %s", stock_id, exc.message)
                    summary["failed"] += 1
                    continue
            summary["recorded"] += recorded

    if summary["recorded"]:
        await invalidate_cache("invoices:*")
    logger.info(
        "Payment catch-up: %d payments recorded on %d lots, %d lots failed",
        summary["recorded"], summary["lots"], summary["failed"],
    )
    return summary
