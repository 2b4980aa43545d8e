"""Payments against stock lots.

Endpoints:
    POST /api/payments/stock/{stock_id}   Apply a payment to a lot and its invoice
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from coopbilling.database import get_db
from coopbilling.schemas.payment import PaymentIn, PaymentResultOut
from coopbilling.services.invoices import SKIP_COMBINED
from coopbilling.services.payments import apply_payment

router = APIRouter()


@router.post("/stock/{stock_id}", response_model=PaymentResultOut)
async def record_stock_payment(
    stock_id: str,
    body: PaymentIn,
    db: AsyncSession = Depends(get_db),
):
    """Record a payment on the stock lot, then on its invoice.

    The invoice is created on the fly when the lot has none yet.  Resending
    a payment with the same payment_id after a failure completes it without
    paying twice.  A lot combined into another lot accepts no payments: the
    call succeeds with applied=false and nothing is written.
    """
    result = await apply_payment(db, stock_id, body)
    if result is None:
        return PaymentResultOut(
            stock_id=stock_id,
            amount=body.amount,
            payment_id=body.payment_id,
            applied=False,
            skipped_reason=SKIP_COMBINED,
        )
    return PaymentResultOut(**result)
