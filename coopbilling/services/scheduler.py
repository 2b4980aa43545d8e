"""Reconciliation scheduler — the sweeps, and the daily loop that runs them.

Sweeps:
    revalue_all()                     price every non-combined lot against the
                                      active catalog entry
    ensure_invoices_for_all_stocks()  give every priced, non-combined lot its
                                      invoice
    record_unfinished_payments()      put payments that reached a lot but not its
                                      invoice on the invoice

All are idempotent and are triggered from many places at once: catalog
activation, the back-office views, the CLI and the daily loop.  A second
identical sweep started in this process waits for the first one and then
finds nothing left to do.  Each lot is committed on its own, so a sweep
that fails or is cancelled part-way leaves every processed lot in a valid
state and can simply be run again.

Cancellation is cooperative: pass an asyncio.Event and set it; the sweep
stops before the next lot.

Usage:
    In main.py:

        from coopbilling.services.scheduler import lifespan
        app = FastAPI(lifespan=lifespan, ...)

Configuration:
    SCHEDULER_ENABLED=true
    RECONCILIATION_HOUR=2   (run at 02:00 UTC daily, via .env)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI
from pydantic import ValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coopbilling.config import settings
from coopbilling.database import async_session
from coopbilling.middleware.exceptions import PersistenceError
from coopbilling.models.stock_lot import StockLot
from coopbilling.schemas.stock_lot import StockLotSnapshot
from coopbilling.services.invoices import ensure_all
from coopbilling.services.payments import record_unfinished_payments
from coopbilling.services.price_catalog import get_active_terms
from coopbilling.services.valuation import compute_valuation, derive_payment_status
from coopbilling.utils.cache import close_redis
from coopbilling.utils.locks import stock_lot_locks, sweep_locks

logger = logging.getLogger("coopbilling.scheduler")


def _cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


# ─────────────────────────────────────────────────────────────
# SWEEP 1:  revalue every lot against the active catalog entry
# ─────────────────────────────────────────────────────────────

async def _revalue_lot(db: AsyncSession, stock_id: str, terms) -> tuple[str, int]:
    """Revalue one lot under its lock.  Returns (outcome, total_cost)."""
    async with stock_lot_locks.hold(stock_id):
        lot = await db.get(StockLot, stock_id, populate_existing=True)
        if lot is None or lot.is_combined:
            return "skipped_combined", 0

        try:
            snapshot = StockLotSnapshot.model_validate(lot)
        except ValidationError as exc:
            logger.warning("Stock %s has an invalid record, not revalued: %s", stock_id, exc)
            return "skipped_invalid", lot.total_cost or 0

        valuation = compute_valuation(terms, snapshot.quality, snapshot.invoiced_quantity)
        if (lot.price_per_ton, lot.total_cost) == (valuation.price_per_ton, valuation.total_cost):
            return "unchanged", valuation.total_cost

        logger.debug(
            "Stock %s: %s/t → %s/t, total %s → %s",
            lot.stock_number, lot.price_per_ton, valuation.price_per_ton,
            lot.total_cost, valuation.total_cost,
        )
        lot.price_per_ton = valuation.price_per_ton
        lot.total_cost = valuation.total_cost
        lot.payment_status = derive_payment_status(lot.amount_paid or 0, valuation.total_cost)
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to revalue stock %s", lot.stock_number)
            raise PersistenceError(f"Failed to revalue stock {stock_id}") from exc
        return "updated", valuation.total_cost


async def revalue_all(db: AsyncSession, cancel_event: asyncio.Event | None = None) -> dict:
    """Price every non-combined lot against the entry active right now.

    With no active entry nothing is touched: a lot never loses a valuation
    it already has.

    Returns:
        {
            "active_entry_id": str | None,
            "processed": int, "updated": int, "unchanged": int,
            "skipped_combined": int, "skipped_invalid": int,
            "total_value": int, "cancelled": bool,
        }
    """
    async with sweep_locks.hold("revalue"):
        terms = await get_active_terms(db)
        summary = {
            "active_entry_id": terms.id if terms else None,
            "processed": 0,
            "updated": 0,
            "unchanged": 0,
            "skipped_combined": 0,
            "skipped_invalid": 0,
            "total_value": 0,
            "cancelled": False,
        }

        if terms is None:
            logger.warning("No active price catalog entry; stock values left as they are")
            current = await db.execute(
                select(func.coalesce(func.sum(StockLot.total_cost), 0)).where(
                    StockLot.is_combined == False  # noqa: E712
                )
            )
            summary["total_value"] = int(current.scalar() or 0)
            return summary

        ids = (await db.execute(select(StockLot.id).order_by(StockLot.created_at))).scalars().all()
        logger.info("Revaluing %d stock lots against catalog entry %s", len(ids), terms.id)

        for stock_id in ids:
            if _cancelled(cancel_event):
                summary["cancelled"] = True
                logger.info("Revaluation cancelled after %d lots", summary["processed"])
                break
            outcome, total_cost = await _revalue_lot(db, stock_id, terms)
            summary[outcome] += 1
            if outcome != "skipped_combined":
                summary["processed"] += 1
                summary["total_value"] += total_cost

    logger.info(
        "Revaluation complete: %d updated, %d unchanged, %d combined skipped, total value %d",
        summary["updated"], summary["unchanged"], summary["skipped_combined"],
        summary["total_value"],
    )
    return summary


# ─────────────────────────────────────────────────────────────
# SWEEP 2:  every eligible lot has its invoice
# ─────────────────────────────────────────────────────────────

async def ensure_invoices_for_all_stocks(
    db: AsyncSession,
    cancel_event: asyncio.Event | None = None,
) -> dict:
    """Create the missing invoices of all priced, non-combined lots.

    Returns {"checked": int, "created": int, "cancelled": bool}.
    """
    async with sweep_locks.hold("invoices"):
        result = await db.execute(
            select(StockLot)
            .where(
                or_(
                    StockLot.is_combined == False,  # noqa: E712
                    StockLot.combined_into_stock == None,  # noqa: E711
                ),
                StockLot.price_per_ton > 0,
                StockLot.total_cost > 0,
            )
            .order_by(StockLot.created_at)
            .execution_options(populate_existing=True)
        )

        lots: list[StockLotSnapshot] = []
        for row in result.scalars().all():
            try:
                lots.append(StockLotSnapshot.model_validate(row))
            except ValidationError as exc:
                logger.warning("Stock %s has an invalid record, not invoiced: %s", row.id, exc)

        created = await ensure_all(db, lots, cancel_event)

    summary = {
        "checked": len(lots),
        "created": created,
        "cancelled": _cancelled(cancel_event),
    }
    logger.info("Invoice sweep: checked %d lots, created %d invoices", len(lots), created)
    return summary


# ─────────────────────────────────────────────────────────────
# Scheduler: session-owning entry points + daily loop
# ─────────────────────────────────────────────────────────────

class ReconciliationScheduler:
    """Runs sweeps in their own sessions (outside any request)."""

    def __init__(self, session_factory: async_sessionmaker = async_session):
        self.session_factory = session_factory

    async def revalue_all(self, cancel_event: asyncio.Event | None = None) -> dict:
        async with self.session_factory() as db:
            return await revalue_all(db, cancel_event)

    async def ensure_invoices_for_all_stocks(self, cancel_event: asyncio.Event | None = None) -> dict:
        async with self.session_factory() as db:
            return await ensure_invoices_for_all_stocks(db, cancel_event)

    async def record_unfinished_payments(self, cancel_event: asyncio.Event | None = None) -> dict:
        async with self.session_factory() as db:
            return await record_unfinished_payments(db, cancel_event)

    async def run_full_sweep(self, cancel_event: asyncio.Event | None = None) -> dict:
        """Revalue, fill invoice gaps, finish open payments, then run the
        consistency checks."""
        from coopbilling.services.reconciliation import run_full_reconciliation

        revaluation = await self.revalue_all(cancel_event)
        invoices = await self.ensure_invoices_for_all_stocks(cancel_event)
        payments = await self.record_unfinished_payments(cancel_event)

        async with self.session_factory() as db:
            try:
                reconciliation = await run_full_reconciliation(db)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        return {
            "revaluation": revaluation,
            "invoices": invoices,
            "payments": payments,
            "reconciliation": reconciliation,
        }

    async def run_forever(self) -> None:
        """Sleep loop that fires the full sweep once per day.

        Calculates seconds until the next target hour (default 02:00 UTC)
        and sleeps until then.
        """
        target_hour = settings.reconciliation_hour

        while True:
            now = datetime.now(timezone.utc)
            next_run = now.replace(hour=target_hour, minute=0, second=0, microsecond=0)
            if next_run <= now:
                next_run += timedelta(days=1)

            wait_seconds = (next_run - now).total_seconds()
            logger.info(
                "Next reconciliation sweep at %s (in %.0f seconds)",
                next_run.isoformat(),
                wait_seconds,
            )

            await asyncio.sleep(wait_seconds)

            try:
                summary = await self.run_full_sweep()
                logger.info(
                    "Daily sweep: %d lots revalued, %d invoices created, %d payments caught up, %d alerts",
                    summary["revaluation"]["updated"],
                    summary["invoices"]["created"],
                    summary["payments"]["recorded"],
                    summary["reconciliation"]["total_alerts"],
                )
            except Exception:
                logger.exception("Unhandled error in daily reconciliation sweep")

            # Small buffer to avoid running twice in the same minute
            await asyncio.sleep(60)


scheduler = ReconciliationScheduler()


def get_scheduler() -> ReconciliationScheduler:
    """FastAPI dependency for the process-wide scheduler."""
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the daily loop on startup, cancel on shutdown."""
    task = None
    if settings.scheduler_enabled:
        task = asyncio.create_task(scheduler.run_forever())
        logger.info("Reconciliation scheduler started")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Reconciliation scheduler stopped")
        await close_redis()
