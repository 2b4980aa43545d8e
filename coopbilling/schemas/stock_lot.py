"""Validated-on-read view of a stock lot.

Stock lots are written by another system, so the engine never trusts the
row shape: every lot is passed through StockLotSnapshot before it is valued,
invoiced or paid against.  The snapshot is also what the invoice registry
freezes terms from, which keeps the pre-payment valuation stable while a
payment is being applied.
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

PaymentStatus = Literal["pending", "partial", "completed"]
Quality = Literal["A", "B", "C"]


class StockLotSnapshot(BaseModel):
    id: str
    stock_number: str
    producer_id: str
    quantity: float = Field(ge=0)
    original_quantity: float | None = None
    quality: Quality
    price_per_ton: int = 0
    total_cost: int = 0
    amount_paid: int = 0
    payment_status: PaymentStatus = "pending"
    is_combined: bool = False
    combined_into_stock: str | None = None
    notes: str | None = None

    model_config = {"from_attributes": True, "frozen": True}

    @field_validator("price_per_ton", "total_cost", "amount_paid", mode="before")
    @classmethod
    def none_is_zero(cls, v):
        return 0 if v is None else v

    @field_validator("is_combined", mode="before")
    @classmethod
    def none_is_false(cls, v):
        return bool(v)

    @property
    def is_consumed(self) -> bool:
        return bool(self.is_combined and self.combined_into_stock)

    @property
    def invoiced_quantity(self) -> float:
        return self.original_quantity or self.quantity

    @property
    def is_priced(self) -> bool:
        return self.price_per_ton > 0 and self.total_cost > 0
