"""Consistency checks between stock lots and invoices."""

import pytest
from sqlalchemy import select

from coopbilling.models.invoice import Invoice
from coopbilling.models.reconciliation_alert import ReconciliationAlert
from coopbilling.models.stock_lot import StockLot
from coopbilling.services.reconciliation import (
    _safe_pct,
    _severity,
    check_consumed_lot_payments,
    check_missing_invoices,
    check_payment_drift,
    run_full_reconciliation,
)
from coopbilling.services.scheduler import ensure_invoices_for_all_stocks


@pytest.mark.unit
class TestHelpers:

    def test_severity_bands(self):
        assert _severity(25) == "critical"
        assert _severity(12) == "high"
        assert _severity(6) == "medium"
        assert _severity(1) == "low"
        assert _severity(0) == "low"

    def test_safe_pct(self):
        assert _safe_pct(0, 0) == 0.0
        assert _safe_pct(0, 10) == 100.0
        assert _safe_pct(200, 150) == 25.0


@pytest.mark.integration
@pytest.mark.asyncio
class TestChecks:

    async def test_missing_invoice(self, make_lot, db_session):
        lot_id = await make_lot(price_per_ton=100000, total_cost=200000)
        await make_lot(price_per_ton=0, total_cost=0)

        alerts = await check_missing_invoices(db_session, "run-1")

        assert len(alerts) == 1
        assert alerts[0].alert_type == "missing_invoice"
        assert alerts[0].entity_refs["stock_id"] == lot_id

        await ensure_invoices_for_all_stocks(db_session)
        assert await check_missing_invoices(db_session, "run-2") == []

    async def test_payment_drift(self, make_lot, db_session):
        lot_id = await make_lot(price_per_ton=100000, total_cost=200000)
        await ensure_invoices_for_all_stocks(db_session)

        # Lot written, invoice write lost
        lot = await db_session.get(StockLot, lot_id)
        lot.amount_paid = 100000
        await db_session.commit()

        alerts = await check_payment_drift(db_session, "run-1")

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.expected_value == 100000
        assert alert.actual_value == 0
        assert alert.variance == -100000
        assert alert.severity == "critical"

    async def test_consumed_lot_balance(self, make_lot, db_session):
        target = await make_lot(price_per_ton=100000, total_cost=200000)
        lot_id = await make_lot(price_per_ton=100000, total_cost=200000)
        await ensure_invoices_for_all_stocks(db_session)

        lot = await db_session.get(StockLot, lot_id)
        lot.is_combined = True
        lot.combined_into_stock = target
        await db_session.commit()

        alerts = await check_consumed_lot_payments(db_session, "run-1")

        assert len(alerts) == 1
        assert alerts[0].severity == "low"
        assert alerts[0].entity_refs["combined_into_stock"] == target


@pytest.mark.integration
@pytest.mark.asyncio
class TestRunFullReconciliation:

    async def test_persists_alerts_and_summarises(self, make_lot, db_session):
        await make_lot(price_per_ton=100000, total_cost=200000)

        summary = await run_full_reconciliation(db_session)
        await db_session.commit()

        assert summary["total_alerts"] == 1
        assert summary["by_type"] == {"missing_invoice": 1}
        assert summary["by_severity"] == {"medium": 1}

        stored = (await db_session.execute(select(ReconciliationAlert))).scalars().all()
        assert len(stored) == 1
        assert stored[0].run_id == summary["run_id"]
        assert stored[0].status == "open"

    async def test_fixed_gaps_are_auto_resolved(self, make_lot, db_session):
        await make_lot(price_per_ton=100000, total_cost=200000)
        await run_full_reconciliation(db_session)
        await db_session.commit()

        await ensure_invoices_for_all_stocks(db_session)
        summary = await run_full_reconciliation(db_session)
        await db_session.commit()

        assert summary["total_alerts"] == 0
        alert = (await db_session.execute(select(ReconciliationAlert))).scalar_one()
        assert alert.status == "resolved"
        assert alert.resolved_at is not None

    async def test_clean_state_has_no_alerts(self, make_lot, db_session):
        await make_lot(price_per_ton=100000, total_cost=200000)
        await ensure_invoices_for_all_stocks(db_session)

        summary = await run_full_reconciliation(db_session)

        assert summary["total_alerts"] == 0
        invoices = (await db_session.execute(select(Invoice))).scalars().all()
        assert len(invoices) == 1
