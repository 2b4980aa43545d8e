"""Price catalog: entries, the single active entry, activation sweeps."""

import pytest
from sqlalchemy import select

from coopbilling.middleware.exceptions import InvariantViolationError, ResourceNotFoundError
from coopbilling.models.invoice import Invoice
from coopbilling.models.price_catalog import PriceCatalogEntry
from coopbilling.schemas.price_catalog import PriceCatalogEntryUpdate
from coopbilling.services import price_catalog


async def _active_ids(db) -> list[str]:
    result = await db.execute(
        select(PriceCatalogEntry.id).where(PriceCatalogEntry.status == "active")
    )
    return list(result.scalars().all())


@pytest.mark.integration
@pytest.mark.asyncio
class TestActivation:

    async def test_new_entry_is_inactive(self, make_entry, db_session):
        entry = await make_entry()
        assert entry.status == "inactive"
        assert await price_catalog.get_active_entry(db_session) is None

    async def test_activate_makes_single_active_entry(self, make_entry, db_session):
        first = await make_entry(base_price=300, activate=True)
        second = await make_entry(base_price=400, activate=True)

        assert await _active_ids(db_session) == [second.id]
        active = await price_catalog.get_active_entry(db_session)
        assert active.id == second.id

        old = await price_catalog.get_entry(db_session, first.id)
        assert old.status == "inactive"

    async def test_reactivating_same_entry_is_harmless(self, make_entry, db_session):
        entry = await make_entry(activate=True)
        await price_catalog.activate(db_session, entry.id, run_sweeps=False)
        assert await _active_ids(db_session) == [entry.id]

    async def test_deactivate_empties_catalog(self, make_entry, db_session):
        entry = await make_entry(activate=True)
        await price_catalog.deactivate(db_session, entry.id)

        assert await price_catalog.get_active_entry(db_session) is None
        assert await price_catalog.get_active_terms(db_session) is None

    async def test_deactivate_inactive_entry_keeps_active_one(self, make_entry, db_session):
        active = await make_entry(activate=True)
        other = await make_entry()
        await price_catalog.deactivate(db_session, other.id)

        current = await price_catalog.get_active_entry(db_session)
        assert current.id == active.id

    async def test_unknown_entry(self, db_session):
        with pytest.raises(ResourceNotFoundError):
            await price_catalog.activate(db_session, "missing")

    async def test_register_pointing_at_inactive_entry(self, make_entry, db_session):
        entry = await make_entry(activate=True)
        row = await db_session.get(PriceCatalogEntry, entry.id)
        row.status = "inactive"
        await db_session.commit()

        with pytest.raises(InvariantViolationError):
            await price_catalog.get_active_entry(db_session)


@pytest.mark.integration
@pytest.mark.asyncio
class TestActivationSweeps:

    async def test_activation_revalues_and_invoices(self, make_entry, make_lot, load_lot, db_session):
        lot_id = await make_lot(quantity=2.5, original_quantity=2.5, quality="A")
        entry = await make_entry()

        result = await price_catalog.activate(db_session, entry.id)

        assert result["revaluation"]["updated"] == 1
        assert result["revaluation"]["active_entry_id"] == entry.id
        assert result["invoices"]["created"] == 1

        lot = await load_lot(lot_id)
        assert lot.price_per_ton == 470000
        assert lot.total_cost == 1175000

        invoice = (
            await db_session.execute(select(Invoice).where(Invoice.stock_id == lot_id))
        ).scalar_one()
        assert invoice.total_amount == 1175000
        assert invoice.price_catalog_entry_id == entry.id
        assert invoice.base_price == 400
        assert invoice.quality_premium == 50
        assert invoice.certification_premiums == 20

    async def test_editing_active_entry_revalues(self, make_entry, make_lot, load_lot, db_session):
        lot_id = await make_lot(quantity=1.0, original_quantity=1.0, quality="C", price_per_ton=0)
        entry = await make_entry(activate=True, run_sweeps=True)
        assert (await load_lot(lot_id)).price_per_ton == 420000

        result = await price_catalog.update_entry(
            db_session, entry.id, PriceCatalogEntryUpdate(base_price=500)
        )

        assert result["revaluation"]["updated"] == 1
        assert (await load_lot(lot_id)).price_per_ton == 520000

    async def test_editing_inactive_entry_does_not_revalue(self, make_entry, make_lot, load_lot, db_session):
        lot_id = await make_lot()
        entry = await make_entry()

        result = await price_catalog.update_entry(
            db_session, entry.id, PriceCatalogEntryUpdate(base_price=900)
        )

        assert result["revaluation"] is None
        assert (await load_lot(lot_id)).price_per_ton == 0
        assert (await price_catalog.get_entry(db_session, entry.id)).base_price == 900
