"""Pydantic schemas for the price catalog."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class CertificationPremium(BaseModel):
    name: str
    premium: float = 0.0

    @field_validator("premium", mode="before")
    @classmethod
    def none_is_zero(cls, v):
        return 0.0 if v is None else v


class CatalogTerms(BaseModel):
    """The pricing inputs of a catalog entry, validated on read.

    Missing quality grades price at zero premium.
    """
    id: str | None = None
    base_price: float
    quality_premiums: dict[Literal["A", "B", "C"], float] = Field(default_factory=dict)
    certifications: list[CertificationPremium] = Field(default_factory=list)

    model_config = {"from_attributes": True, "frozen": True}

    @field_validator("quality_premiums", mode="before")
    @classmethod
    def drop_null_premiums(cls, v):
        if not v:
            return {}
        return {k: p for k, p in v.items() if p is not None}

    @field_validator("certifications", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or []


class PriceCatalogEntryCreate(BaseModel):
    base_price: float = Field(ge=0)
    quality_premiums: dict[Literal["A", "B", "C"], float] = Field(
        default_factory=lambda: {"A": 0.0, "B": 0.0, "C": 0.0}
    )
    certifications: list[CertificationPremium] = Field(default_factory=list)
    effective_date: date | None = None
    notes: str | None = None
    activate: bool = False


class PriceCatalogEntryUpdate(BaseModel):
    base_price: float | None = Field(default=None, ge=0)
    quality_premiums: dict[Literal["A", "B", "C"], float] | None = None
    certifications: list[CertificationPremium] | None = None
    effective_date: date | None = None
    notes: str | None = None


class PriceCatalogEntryOut(BaseModel):
    id: str
    base_price: float
    quality_premiums: dict[str, float]
    certifications: list[CertificationPremium]
    effective_date: date
    status: str
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ActivationOut(BaseModel):
    entry: PriceCatalogEntryOut
    revaluation: dict | None = None
    invoices: dict | None = None
