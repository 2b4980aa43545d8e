"""Pydantic schemas for sweeps and reconciliation API responses."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class RevaluationSummary(BaseModel):
    """Summary returned after a revaluation sweep."""
    active_entry_id: str | None
    processed: int
    updated: int
    unchanged: int
    skipped_combined: int
    skipped_invalid: int = 0
    total_value: int
    cancelled: bool = False


class InvoiceSweepSummary(BaseModel):
    """Summary returned after an invoice sweep."""
    checked: int
    created: int
    cancelled: bool = False


class PaymentCatchUpSummary(BaseModel):
    """Summary returned after open journal payments were put on invoices."""
    lots: int
    recorded: int
    failed: int
    cancelled: bool = False


class RunSummary(BaseModel):
    """Summary returned after a consistency-check run."""
    run_id: str
    ran_at: str
    total_alerts: int
    by_type: dict[str, int]
    by_severity: dict[str, int]



class AlertOut(BaseModel):
    """Single reconciliation alert."""
    id: str
    alert_type: str
    severity: str
    title: str
    description: str
    expected_value: float | None
    actual_value: float | None
    variance: float | None
    variance_pct: float | None
    unit: str | None
    entity_refs: dict | None
    status: str
    resolved_at: datetime | None
    resolution_note: str | None
    run_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AlertUpdate(BaseModel):
    """Update an alert's status."""
    status: Literal["acknowledged", "resolved", "dismissed"]
    resolution_note: str | None = None
