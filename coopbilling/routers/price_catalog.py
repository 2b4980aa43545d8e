"""Price catalog — entries and the active-entry switch.

Endpoints:
    GET   /api/price-catalog                      List entries, newest first
    POST  /api/price-catalog                      Create (optionally activate)
    GET   /api/price-catalog/active               The active entry
    GET   /api/price-catalog/{entry_id}           Single entry
    PATCH /api/price-catalog/{entry_id}           Edit (revalues if active)
    POST  /api/price-catalog/{entry_id}/activate  Activate, revalue, invoice
    POST  /api/price-catalog/{entry_id}/deactivate
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from coopbilling.database import get_db
from coopbilling.middleware.exceptions import ResourceNotFoundError
from coopbilling.schemas.price_catalog import (
    ActivationOut,
    PriceCatalogEntryCreate,
    PriceCatalogEntryOut,
    PriceCatalogEntryUpdate,
)
from coopbilling.services import price_catalog as catalog

router = APIRouter()


@router.get("", response_model=list[PriceCatalogEntryOut])
async def list_entries(db: AsyncSession = Depends(get_db)):
    return await catalog.list_entries(db)


@router.post("", response_model=ActivationOut, status_code=status.HTTP_201_CREATED)
async def create_entry(body: PriceCatalogEntryCreate, db: AsyncSession = Depends(get_db)):
    """Create an entry.  With activate=true it becomes the active entry and
    every lot is revalued and invoiced before the response is sent."""
    entry = await catalog.create_entry(db, body)
    if not body.activate:
        return {"entry": entry, "revaluation": None, "invoices": None}
    return await catalog.activate(db, entry.id)


@router.get("/active", response_model=PriceCatalogEntryOut)
async def get_active(db: AsyncSession = Depends(get_db)):
    entry = await catalog.get_active_entry(db)
    if entry is None:
        raise ResourceNotFoundError("Price catalog entry", "active")
    return entry


@router.get("/{entry_id}", response_model=PriceCatalogEntryOut)
async def get_entry(entry_id: str, db: AsyncSession = Depends(get_db)):
    return await catalog.get_entry(db, entry_id)


@router.patch("/{entry_id}", response_model=ActivationOut)
async def update_entry(
    entry_id: str,
    body: PriceCatalogEntryUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await catalog.update_entry(db, entry_id, body)


@router.post("/{entry_id}/activate", response_model=ActivationOut)
async def activate_entry(entry_id: str, db: AsyncSession = Depends(get_db)):
    return await catalog.activate(db, entry_id)


@router.post("/{entry_id}/deactivate", response_model=PriceCatalogEntryOut)
async def deactivate_entry(entry_id: str, db: AsyncSession = Depends(get_db)):
    return await catalog.deactivate(db, entry_id)
