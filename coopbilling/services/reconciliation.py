"""Reconciliation service — detects gaps between stock lots and their invoices.

A payment is written to the stock lot first and to the invoice second, and
the sweeps fill in invoices lazily, so the two documents can be out of step
for a while.  Each check_* function runs one comparison query and returns a
list of ReconciliationAlert objects (unsaved).  `run_full_reconciliation`
runs them all in a single pass, persists the alerts, and returns a run
summary.

Thresholds:
    - PAYMENT_TOLERANCE: ignore amount_paid differences up to this many
                         currency units (amounts are whole units, so 0)
"""

import uuid
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coopbilling.models.invoice import Invoice
from coopbilling.models.reconciliation_alert import ReconciliationAlert
from coopbilling.models.stock_lot import StockLot

# ── Configurable thresholds ──────────────────────────────────
PAYMENT_TOLERANCE = 0


def _severity(variance_pct: float) -> str:
    """Map variance percentage to severity level."""
    abs_pct = abs(variance_pct) if variance_pct else 0
    if abs_pct >= 20:
        return "critical"
    if abs_pct >= 10:
        return "high"
    if abs_pct >= 5:
        return "medium"
    return "low"


def _safe_pct(expected: float, actual: float) -> float:
    """Calculate percentage variance safely."""
    if not expected:
        return 100.0 if actual else 0.0
    return round(abs(actual - expected) / abs(expected) * 100, 2)


def _not_consumed():
    return or_(
        StockLot.is_combined == False,  # noqa: E712
        StockLot.combined_into_stock == None,  # noqa: E711
    )


# ─────────────────────────────────────────────────────────────
# CHECK 1:  more than one invoice for the same stock lot
# ─────────────────────────────────────────────────────────────

async def check_duplicate_invoices(db: AsyncSession, run_id: str) -> list[ReconciliationAlert]:
    """The unique index makes this impossible in a healthy database; an
    alert here means the index is missing or was bypassed."""
    stmt = (
        select(
            Invoice.stock_id,
            func.count(Invoice.id).label("invoice_count"),
            func.min(Invoice.stock_number).label("stock_number"),
        )
        .group_by(Invoice.stock_id)
        .having(func.count(Invoice.id) > 1)
    )

    result = await db.execute(stmt)
    alerts = []

    for row in result.all():
        alerts.append(ReconciliationAlert(
            alert_type="duplicate_invoice",
            severity="critical",
            title=f"Stock {row.stock_number}: {row.invoice_count} invoices",
            description=(
                f"Stock lot {row.stock_number} has {row.invoice_count} invoices; "
                f"exactly one is allowed.  Payments cannot be recorded until "
                f"the extra invoices are removed."
            ),
            expected_value=1,
            actual_value=row.invoice_count,
            variance=row.invoice_count - 1,
            variance_pct=_safe_pct(1, row.invoice_count),
            unit="invoices",
            entity_refs={"stock_id": row.stock_id, "stock_number": row.stock_number},
            run_id=run_id,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# CHECK 2:  priced, non-consumed lot without an invoice
# ─────────────────────────────────────────────────────────────

async def check_missing_invoices(db: AsyncSession, run_id: str) -> list[ReconciliationAlert]:
    """Lots the invoice sweep should have covered but has not (yet)."""
    stmt = (
        select(StockLot.id, StockLot.stock_number, StockLot.total_cost)
        .outerjoin(Invoice, Invoice.stock_id == StockLot.id)
        .where(
            _not_consumed(),
            StockLot.price_per_ton > 0,
            StockLot.total_cost > 0,
            Invoice.id == None,  # noqa: E711
        )
    )

    result = await db.execute(stmt)
    alerts = []

    for row in result.all():
        alerts.append(ReconciliationAlert(
            alert_type="missing_invoice",
            severity="medium",
            title=f"Stock {row.stock_number}: no invoice",
            description=(
                f"Stock lot {row.stock_number} is valued at {row.total_cost} "
                f"but has no invoice.  Run the invoice sweep to create it."
            ),
            expected_value=1,
            actual_value=0,
            variance=-1,
            variance_pct=100.0,
            unit="invoices",
            entity_refs={"stock_id": row.id, "stock_number": row.stock_number},
            run_id=run_id,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# CHECK 3:  invoice amount_paid  ≠  stock lot amount_paid
# ─────────────────────────────────────────────────────────────

async def check_payment_drift(db: AsyncSession, run_id: str) -> list[ReconciliationAlert]:
    """The stock lot is written first, so it is the expected side."""
    stmt = (
        select(
            StockLot.id.label("stock_id"),
            StockLot.stock_number,
            StockLot.amount_paid.label("stock_paid"),
            Invoice.id.label("invoice_id"),
            Invoice.invoice_number,
            Invoice.amount_paid.label("invoice_paid"),
        )
        .join(Invoice, Invoice.stock_id == StockLot.id)
        .where(
            _not_consumed(),
            func.coalesce(StockLot.amount_paid, 0) != func.coalesce(Invoice.amount_paid, 0),
        )
    )

    result = await db.execute(stmt)
    alerts = []

    for row in result.all():
        expected = row.stock_paid or 0
        actual = row.invoice_paid or 0
        variance = actual - expected
        if abs(variance) <= PAYMENT_TOLERANCE:
            continue
        pct = _safe_pct(expected, actual)

        alerts.append(ReconciliationAlert(
            alert_type="payment_drift",
            severity=_severity(pct),
            title=f"Invoice {row.invoice_number}: paid amount ≠ stock {row.stock_number}",
            description=(
                f"Stock lot {row.stock_number} records {expected} paid but "
                f"invoice {row.invoice_number} records {actual} "
                f"(variance {variance:+d} / {pct:.1f}%)."
            ),
            expected_value=expected,
            actual_value=actual,
            variance=variance,
            variance_pct=pct,
            unit="currency",
            entity_refs={
                "stock_id": row.stock_id,
                "stock_number": row.stock_number,
                "invoice_id": row.invoice_id,
                "invoice_number": row.invoice_number,
            },
            run_id=run_id,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# CHECK 4:  consumed lot whose invoice still shows a balance
# ─────────────────────────────────────────────────────────────

async def check_consumed_lot_payments(db: AsyncSession, run_id: str) -> list[ReconciliationAlert]:
    """Payments against a consumed lot are ignored, so its open balance
    will never close through this invoice.  Informational only."""
    stmt = (
        select(
            StockLot.id.label("stock_id"),
            StockLot.stock_number,
            StockLot.combined_into_stock,
            Invoice.id.label("invoice_id"),
            Invoice.invoice_number,
            Invoice.total_amount,
            Invoice.amount_paid,
        )
        .join(Invoice, Invoice.stock_id == StockLot.id)
        .where(
            StockLot.is_combined == True,  # noqa: E712
            StockLot.combined_into_stock != None,  # noqa: E711
            func.coalesce(Invoice.amount_paid, 0) < Invoice.total_amount,
        )
    )

    result = await db.execute(stmt)
    alerts = []

    for row in result.all():
        paid = row.amount_paid or 0
        outstanding = row.total_amount - paid

        alerts.append(ReconciliationAlert(
            alert_type="consumed_lot_balance",
            severity="low",
            title=f"Invoice {row.invoice_number}: balance on combined stock",
            description=(
                f"Stock lot {row.stock_number} was combined into "
                f"{row.combined_into_stock} while invoice {row.invoice_number} "
                f"still has {outstanding} outstanding of {row.total_amount}."
            ),
            expected_value=row.total_amount,
            actual_value=paid,
            variance=-outstanding,
            variance_pct=_safe_pct(row.total_amount, paid),
            unit="currency",
            entity_refs={
                "stock_id": row.stock_id,
                "stock_number": row.stock_number,
                "invoice_id": row.invoice_id,
                "invoice_number": row.invoice_number,
                "combined_into_stock": row.combined_into_stock,
            },
            run_id=run_id,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# ORCHESTRATOR
# ─────────────────────────────────────────────────────────────

async def run_full_reconciliation(db: AsyncSession) -> dict:
    """Execute all reconciliation checks, persist alerts, return summary.

    Returns:
        {
            "run_id": "...",
            "ran_at": "...",
            "total_alerts": int,
            "by_type": {"payment_drift": int, ...},
            "by_severity": {"critical": int, "high": int, ...},
        }
    """
    run_id = str(uuid.uuid4())

    # Auto-resolve stale open alerts from previous runs
    # (if a gap still exists, this run raises it again)
    old_open = await db.execute(
        select(ReconciliationAlert).where(
            ReconciliationAlert.status == "open",
            ReconciliationAlert.run_id != run_id,
        )
    )
    for old_alert in old_open.scalars().all():
        old_alert.status = "resolved"
        old_alert.resolution_note = "Auto-resolved: mismatch no longer detected"
        old_alert.resolved_at = datetime.utcnow()
    await db.flush()

    all_alerts: list[ReconciliationAlert] = []

    checks = [
        check_duplicate_invoices,
        check_missing_invoices,
        check_payment_drift,
        check_consumed_lot_payments,
    ]

    for check_fn in checks:
        alerts = await check_fn(db, run_id)
        all_alerts.extend(alerts)

    for alert in all_alerts:
        db.add(alert)
    await db.flush()

    by_type: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    for a in all_alerts:
        by_type[a.alert_type] = by_type.get(a.alert_type, 0) + 1
        by_severity[a.severity] = by_severity.get(a.severity, 0) + 1

    return {
        "run_id": run_id,
        "ran_at": datetime.utcnow().isoformat(),
        "total_alerts": len(all_alerts),
        "by_type": by_type,
        "by_severity": by_severity,
    }
