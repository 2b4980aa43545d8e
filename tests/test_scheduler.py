"""Revaluation sweep and the session-owning scheduler."""

import asyncio

import pytest

from coopbilling.services.scheduler import revalue_all


@pytest.mark.integration
@pytest.mark.asyncio
class TestRevalueAll:

    async def test_no_active_entry_leaves_lots_untouched(self, make_lot, load_lot, db_session):
        lot_id = await make_lot(price_per_ton=300000, total_cost=600000)

        summary = await revalue_all(db_session)

        assert summary["active_entry_id"] is None
        assert summary["processed"] == 0
        assert summary["total_value"] == 600000
        lot = await load_lot(lot_id)
        assert lot.price_per_ton == 300000
        assert lot.total_cost == 600000

    async def test_revalues_against_active_entry(self, make_lot, make_entry, load_lot, db_session):
        a = await make_lot(quality="A", quantity=2.5, original_quantity=2.5)
        b = await make_lot(quality="B", quantity=1.0, original_quantity=1.0)
        entry = await make_entry(activate=True)

        summary = await revalue_all(db_session)

        assert summary["active_entry_id"] == entry.id
        assert summary["processed"] == 2
        assert summary["updated"] == 2
        assert summary["total_value"] == 1175000 + 445000
        assert (await load_lot(a)).total_cost == 1175000
        assert (await load_lot(b)).price_per_ton == 445000

    async def test_uses_original_quantity(self, make_lot, make_entry, load_lot, db_session):
        lot_id = await make_lot(quantity=1.0, original_quantity=2.0)
        await make_entry(activate=True)

        await revalue_all(db_session)

        assert (await load_lot(lot_id)).total_cost == 940000

    async def test_second_run_changes_nothing(self, make_lot, make_entry, db_session):
        await make_lot()
        await make_entry(activate=True)

        await revalue_all(db_session)
        again = await revalue_all(db_session)

        assert again["updated"] == 0
        assert again["unchanged"] == 1

    async def test_combined_lots_are_skipped(self, make_lot, make_entry, load_lot, db_session):
        target = await make_lot()
        combined = await make_lot(is_combined=True, combined_into_stock=target,
                                  price_per_ton=1, total_cost=2)
        await make_entry(activate=True)

        summary = await revalue_all(db_session)

        assert summary["skipped_combined"] == 1
        assert summary["processed"] == 1
        lot = await load_lot(combined)
        assert (lot.price_per_ton, lot.total_cost) == (1, 2)

    async def test_status_rederived_from_new_total(self, make_lot, make_entry, load_lot, db_session):
        paid = await make_lot(quantity=1.0, original_quantity=1.0, price_per_ton=100000,
                              total_cost=100000, amount_paid=100000, payment_status="completed")
        untouched = await make_lot(quantity=1.0, original_quantity=1.0)
        await make_entry(activate=True)

        await revalue_all(db_session)

        # 470000 now owed, 100000 paid
        assert (await load_lot(paid)).payment_status == "partial"
        assert (await load_lot(untouched)).payment_status == "pending"

    async def test_cancellation_leaves_processed_lots_valid(self, make_lot, make_entry, db_session):
        for _ in range(3):
            await make_lot()
        await make_entry(activate=True)
        cancel = asyncio.Event()
        cancel.set()

        summary = await revalue_all(db_session, cancel)

        assert summary["cancelled"] is True
        assert summary["processed"] == 0

        rerun = await revalue_all(db_session)
        assert rerun["updated"] == 3


@pytest.mark.integration
@pytest.mark.asyncio
class TestReconciliationScheduler:

    async def test_full_sweep(self, make_lot, make_entry, scheduler):
        await make_lot()
        await make_lot(price_per_ton=0, total_cost=0, quantity=0, original_quantity=0)
        await make_entry(activate=True)

        summary = await scheduler.run_full_sweep()

        # The empty lot gets a price per ton but no total, so it stays uninvoiced
        assert summary["revaluation"]["updated"] == 2
        assert summary["invoices"]["created"] == 1
        assert summary["payments"]["recorded"] == 0
        assert summary["reconciliation"]["total_alerts"] == 0

    async def test_concurrent_sweeps_do_not_duplicate(self, make_lot, make_entry, scheduler, session_factory):
        for _ in range(4):
            await make_lot()
        await make_entry(activate=True)
        await scheduler.revalue_all()

        results = await asyncio.gather(
            *(scheduler.ensure_invoices_for_all_stocks() for _ in range(3))
        )

        assert sum(r["created"] for r in results) == 4
