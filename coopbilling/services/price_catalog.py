"""Price catalog service — entries, and the guarded activation switch.

activate(entry_id) runs three steps strictly in order:

  1. every other entry → inactive
  2. target entry → active, register.active_entry_id → target
  3. revaluation sweep, then the invoice sweep

Steps 1–2 are one transaction, committed before step 3 starts.  The sweep
re-reads the register after the commit, so it always prices against
whichever entry is active now, never against a snapshot taken before a
concurrent activation landed.

Deactivating the active entry empties the register.  Nothing is revalued:
lots keep their last valuation until another entry is activated.
"""

import logging
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coopbilling.middleware.exceptions import (
    InvariantViolationError,
    PersistenceError,
    ResourceNotFoundError,
)
from coopbilling.models.price_catalog import (
    REGISTER_ID,
    PriceCatalogEntry,
    PriceCatalogRegister,
)
from coopbilling.schemas.price_catalog import (
    CatalogTerms,
    PriceCatalogEntryCreate,
    PriceCatalogEntryUpdate,
)
from coopbilling.utils.locks import CATALOG_KEY, catalog_locks

logger = logging.getLogger("coopbilling.price_catalog")


# ── Reads ────────────────────────────────────────────────────

async def get_entry(db: AsyncSession, entry_id: str) -> PriceCatalogEntry:
    entry = await db.get(PriceCatalogEntry, entry_id)
    if entry is None:
        raise ResourceNotFoundError("Price catalog entry", entry_id)
    return entry


async def list_entries(db: AsyncSession) -> list[PriceCatalogEntry]:
    result = await db.execute(
        select(PriceCatalogEntry).order_by(PriceCatalogEntry.effective_date.desc())
    )
    return list(result.scalars().all())


async def _get_register(db: AsyncSession, for_update: bool = False) -> PriceCatalogRegister | None:
    stmt = (
        select(PriceCatalogRegister)
        .where(PriceCatalogRegister.id == REGISTER_ID)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_active_entry(db: AsyncSession) -> PriceCatalogEntry | None:
    """The entry named by the register, or None when the catalog is empty."""
    register = await _get_register(db)
    if register is None or register.active_entry_id is None:
        return None

    entry = await db.get(PriceCatalogEntry, register.active_entry_id, populate_existing=True)
    if entry is None or entry.status != "active":
        raise InvariantViolationError(
            f"Price catalog register points at {register.active_entry_id} "
            f"which is not an active entry"
        )
    return entry


async def get_active_terms(db: AsyncSession) -> CatalogTerms | None:
    """Validated pricing inputs of the active entry."""
    entry = await get_active_entry(db)
    if entry is None:
        return None
    return CatalogTerms.model_validate(entry)


# ── Writes ───────────────────────────────────────────────────

async def _commit(db: AsyncSession, what: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Failed to commit %s", what)
        raise PersistenceError(f"Failed to save {what}") from exc


async def create_entry(db: AsyncSession, body: PriceCatalogEntryCreate) -> PriceCatalogEntry:
    """Store a new, inactive entry.  Activation is a separate step."""
    entry = PriceCatalogEntry(
        base_price=body.base_price,
        quality_premiums=dict(body.quality_premiums),
        certifications=[c.model_dump() for c in body.certifications],
        effective_date=body.effective_date or date.today(),
        status="inactive",
        notes=body.notes,
    )
    db.add(entry)
    await _commit(db, "price catalog entry")
    logger.info("Created price catalog entry %s (base %.2f/kg)", entry.id, entry.base_price)
    return entry


async def update_entry(
    db: AsyncSession,
    entry_id: str,
    body: PriceCatalogEntryUpdate,
) -> dict:
    """Edit an entry.  Editing the active entry revalues every lot.

    Returns the same shape as activate().
    """
    async with catalog_locks.hold(CATALOG_KEY):
        entry = await get_entry(db, entry_id)
        for field_name, value in body.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(entry, field_name, value)
        await _commit(db, "price catalog entry")

    if entry.status != "active":
        return {"entry": entry, "revaluation": None, "invoices": None}

    return await _run_sweeps(db, entry)


async def _run_sweeps(db: AsyncSession, entry: PriceCatalogEntry) -> dict:
    from coopbilling.services.scheduler import (  # deferred to avoid circular
        ensure_invoices_for_all_stocks,
        revalue_all,
    )

    revaluation = await revalue_all(db)
    invoices = await ensure_invoices_for_all_stocks(db)
    return {"entry": entry, "revaluation": revaluation, "invoices": invoices}


async def activate(db: AsyncSession, entry_id: str, run_sweeps: bool = True) -> dict:
    """Make `entry_id` the only active entry, then revalue and invoice.

    Returns {"entry": entry, "revaluation": {...} | None, "invoices": {...} | None}.
    """
    async with catalog_locks.hold(CATALOG_KEY):
        entry = await get_entry(db, entry_id)
        register = await _get_register(db, for_update=True)
        if register is None:
            register = PriceCatalogRegister(id=REGISTER_ID)
            db.add(register)

        await db.execute(
            update(PriceCatalogEntry)
            .where(PriceCatalogEntry.id != entry_id, PriceCatalogEntry.status == "active")
            .values(status="inactive", updated_at=datetime.utcnow())
        )
        entry.status = "active"
        register.active_entry_id = entry_id
        register.activated_at = datetime.utcnow()
        await _commit(db, "price catalog activation")

    logger.info("Activated price catalog entry %s", entry_id)

    if not run_sweeps:
        return {"entry": entry, "revaluation": None, "invoices": None}

    return await _run_sweeps(db, entry)


async def deactivate(db: AsyncSession, entry_id: str) -> PriceCatalogEntry:
    """Mark an entry inactive; the catalog may be left with no active entry."""
    async with catalog_locks.hold(CATALOG_KEY):
        entry = await get_entry(db, entry_id)
        register = await _get_register(db, for_update=True)

        entry.status = "inactive"
        if register is not None and register.active_entry_id == entry_id:
            register.active_entry_id = None
            logger.warning("Price catalog now has no active entry")
        await _commit(db, "price catalog deactivation")

    logger.info("Deactivated price catalog entry %s", entry_id)
    return entry
