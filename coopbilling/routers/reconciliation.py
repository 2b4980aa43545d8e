"""Reconciliation router — sweeps and consistency alerts.

Endpoints:
    POST  /revalue              Revalue every lot against the active entry
    POST  /invoices             Create the missing invoices
    POST  /payments             Record lot-only payments on their invoices
    POST  /run                  Run the consistency checks
    GET   /alerts               List alerts with filters
    PATCH /alerts/{alert_id}    Acknowledge / resolve / dismiss an alert

The sweeps run in their own sessions through the scheduler, one lot per
commit, so a long sweep never holds the request transaction open.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coopbilling.database import get_db
from coopbilling.middleware.exceptions import ResourceNotFoundError
from coopbilling.models.reconciliation_alert import ReconciliationAlert
from coopbilling.schemas.reconciliation import (
    AlertOut,
    AlertUpdate,
    InvoiceSweepSummary,
    PaymentCatchUpSummary,
    RevaluationSummary,
    RunSummary,
)
from coopbilling.services.reconciliation import run_full_reconciliation
from coopbilling.services.scheduler import ReconciliationScheduler, get_scheduler

router = APIRouter()


# ── Sweeps ───────────────────────────────────────────────────

@router.post("/revalue", response_model=RevaluationSummary)
async def trigger_revaluation(scheduler: ReconciliationScheduler = Depends(get_scheduler)):
    return await scheduler.revalue_all()


@router.post("/invoices", response_model=InvoiceSweepSummary)
async def trigger_invoice_sweep(scheduler: ReconciliationScheduler = Depends(get_scheduler)):
    return await scheduler.ensure_invoices_for_all_stocks()


@router.post("/payments", response_model=PaymentCatchUpSummary)
async def trigger_payment_catch_up(scheduler: ReconciliationScheduler = Depends(get_scheduler)):
    return await scheduler.record_unfinished_payments()


# ── Trigger a reconciliation run ─────────────────────────────

@router.post("/run", response_model=RunSummary, status_code=status.HTTP_201_CREATED)
async def trigger_run(db: AsyncSession = Depends(get_db)):
    """Run all consistency checks.  Previous open alerts that no longer
    appear are auto-resolved."""
    summary = await run_full_reconciliation(db)
    return RunSummary(**summary)


# ── List alerts with filters ─────────────────────────────────

@router.get("/alerts", response_model=list[AlertOut])
async def list_alerts(
    alert_type: str | None = Query(None, description="Filter by alert_type"),
    severity: str | None = Query(None, description="Filter by severity"),
    alert_status: str | None = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    stmt = (
        select(ReconciliationAlert)
        .where(ReconciliationAlert.is_deleted == False)  # noqa: E712
    )

    if alert_type:
        stmt = stmt.where(ReconciliationAlert.alert_type == alert_type)
    if severity:
        stmt = stmt.where(ReconciliationAlert.severity == severity)
    if alert_status:
        stmt = stmt.where(ReconciliationAlert.status == alert_status)

    stmt = (
        stmt
        .order_by(ReconciliationAlert.created_at.desc())
        .limit(limit)
        .offset(offset)
    )

    result = await db.execute(stmt)
    return result.scalars().all()


# ── Update alert status ──────────────────────────────────────

@router.patch("/alerts/{alert_id}", response_model=AlertOut)
async def update_alert(
    alert_id: str,
    body: AlertUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Acknowledge, resolve, or dismiss an alert."""
    result = await db.execute(
        select(ReconciliationAlert).where(
            ReconciliationAlert.id == alert_id,
            ReconciliationAlert.is_deleted == False,  # noqa: E712
        )
    )
    alert = result.scalar_one_or_none()
    if not alert:
        raise ResourceNotFoundError("Alert", alert_id)

    alert.status = body.status
    if body.resolution_note:
        alert.resolution_note = body.resolution_note
    if body.status in ("resolved", "dismissed"):
        alert.resolved_at = datetime.utcnow()

    await db.flush()
    return alert
