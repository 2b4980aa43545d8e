"""Pydantic schemas for payments applied to stock lots."""

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator

PAYMENT_METHODS = ("cash", "bank_transfer", "mobile_money")

PaymentMethod = Literal["cash", "bank_transfer", "mobile_money"]


class PaymentIn(BaseModel):
    """A payment to apply.

    payment_id identifies the payment across resubmissions: sending the same
    payment_id again after a failure finishes the first attempt instead of
    paying twice.  Generated when the caller does not supply one.
    """
    payment_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()), min_length=1, max_length=64
    )
    amount: int
    method: PaymentMethod = "cash"
    date: datetime = Field(default_factory=datetime.utcnow)
    reference: str | None = None
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v

    @field_validator("date")
    @classmethod
    def naive_utc(cls, v: datetime) -> datetime:
        # Stored in timezone-naive UTC columns
        if v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class PaymentResultOut(BaseModel):
    """Both documents after the payment.

    applied is False when the lot was combined into another lot and the
    payment was ignored; the remaining fields are then empty.
    replayed is True when this payment_id was already fully recorded and
    nothing was written.
    """
    stock_id: str
    amount: int
    payment_id: str | None = None
    applied: bool = True
    replayed: bool = False
    skipped_reason: str | None = None
    invoice_id: str | None = None
    invoice_number: str | None = None
    stock_amount_paid: int | None = None
    stock_payment_status: str | None = None
    invoice_amount_paid: int | None = None
    invoice_payment_status: str | None = None
    invoice_created: bool = False
