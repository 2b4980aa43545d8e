"""Invoices — one per eligible stock lot.

Endpoints:
    GET  /api/invoices                     List invoices (status incl. "overdue")
    GET  /api/invoices/stats               Totals for the back-office dashboard
    GET  /api/invoices/by-stock/{stock_id} The invoice of a stock lot
    GET  /api/invoices/{invoice_id}        Single invoice with payment history
    POST /api/invoices/ensure/{stock_id}   Create the lot's invoice if missing
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coopbilling.database import get_db
from coopbilling.middleware.exceptions import ResourceNotFoundError
from coopbilling.schemas.common import PaginatedResponse
from coopbilling.schemas.invoice import EnsureInvoiceOut, InvoiceOut, InvoiceStats
from coopbilling.services.invoices import (
    current_snapshot,
    ensure_with_status,
    find_invoice_for_stock,
    get_invoice,
    ineligibility_reason,
    invoice_stats,
    list_invoices,
)

router = APIRouter()


@router.get("", response_model=PaginatedResponse[InvoiceOut])
async def list_all(
    status: str | None = Query(None, description="pending | partial | completed | overdue"),
    producer_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    items, total = await list_invoices(
        db, status=status, producer_id=producer_id, limit=limit, offset=offset
    )
    return PaginatedResponse[InvoiceOut](
        items=[InvoiceOut.model_validate(i) for i in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=InvoiceStats)
async def stats(db: AsyncSession = Depends(get_db)):
    return await invoice_stats(db)


@router.get("/by-stock/{stock_id}", response_model=InvoiceOut)
async def get_by_stock(stock_id: str, db: AsyncSession = Depends(get_db)):
    invoice = await find_invoice_for_stock(db, stock_id)
    if invoice is None:
        raise ResourceNotFoundError("Invoice for stock lot", stock_id)
    return invoice


@router.get("/{invoice_id}", response_model=InvoiceOut)
async def get_one(invoice_id: str, db: AsyncSession = Depends(get_db)):
    return await get_invoice(db, invoice_id)


@router.post("/ensure/{stock_id}", response_model=EnsureInvoiceOut)
async def ensure_for_stock(stock_id: str, db: AsyncSession = Depends(get_db)):
    """Return the lot's invoice, creating it if missing.

    Ineligible lots (combined, or without price data) get invoice=null and
    a skipped_reason instead of an error.
    """
    snapshot = await current_snapshot(db, stock_id)
    invoice, created = await ensure_with_status(db, snapshot)
    return EnsureInvoiceOut(
        stock_id=stock_id,
        invoice=InvoiceOut.model_validate(invoice) if invoice is not None else None,
        created=created,
        skipped_reason=ineligibility_reason(snapshot) if invoice is None else None,
    )
