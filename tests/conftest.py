"""Pytest configuration and fixtures for CoopBilling tests.

Each test gets its own SQLite file (aiosqlite), so the unique indexes and
version counters are really enforced and separate sessions really race.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from coopbilling.config import settings
from coopbilling.database import Base, get_db
from coopbilling.main import app
from coopbilling.models.price_catalog import PriceCatalogEntry
from coopbilling.models.stock_lot import StockLot
from coopbilling.schemas.price_catalog import CertificationPremium, PriceCatalogEntryCreate
from coopbilling.services import price_catalog
from coopbilling.services.scheduler import ReconciliationScheduler, get_scheduler


# ── Test Database Setup ──────────────────────────────────────────

@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    """Run every test against the database only."""
    monkeypatch.setattr(settings, "cache_enabled", False)


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """File-backed SQLite engine with every table created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'coopbilling.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def scheduler(session_factory) -> ReconciliationScheduler:
    return ReconciliationScheduler(session_factory)


@pytest_asyncio.fixture
async def client(session_factory, scheduler) -> AsyncGenerator[AsyncClient, None]:
    """Test client with database and scheduler dependencies overridden."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scheduler] = lambda: scheduler

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def make_lot(session_factory):
    """Insert a stock lot (as the stock registry would) and return its id."""
    counter = {"n": 0}

    async def _make(**overrides) -> str:
        counter["n"] += 1
        values = {
            "stock_number": f"STK-{counter['n']:04d}",
            "producer_id": "producer-1",
            "quantity": 2.0,
            "original_quantity": 2.0,
            "quality": "A",
            "price_per_ton": 0,
            "total_cost": 0,
            "amount_paid": 0,
            "payment_status": "pending",
            "is_combined": False,
        }
        values.update(overrides)
        async with session_factory() as session:
            lot = StockLot(**values)
            session.add(lot)
            await session.commit()
            return lot.id

    return _make


@pytest.fixture
def make_entry(session_factory):
    """Create a catalog entry through the service; optionally activate it."""

    async def _make(
        base_price: float = 400.0,
        premiums: dict | None = None,
        certifications: list[tuple[str, float]] | None = None,
        activate: bool = False,
        run_sweeps: bool = False,
    ) -> PriceCatalogEntry:
        body = PriceCatalogEntryCreate(
            base_price=base_price,
            quality_premiums=premiums if premiums is not None else {"A": 50, "B": 25, "C": 0},
            certifications=[
                CertificationPremium(name=name, premium=premium)
                for name, premium in (certifications if certifications is not None else [("Organic", 20)])
            ],
        )
        async with session_factory() as session:
            entry = await price_catalog.create_entry(session, body)
            if activate:
                await price_catalog.activate(session, entry.id, run_sweeps=run_sweeps)
            return entry

    return _make


@pytest.fixture
def load_lot(session_factory):
    """Fresh copy of a stock lot as stored."""

    async def _load(stock_id: str) -> StockLot:
        async with session_factory() as session:
            return await session.get(StockLot, stock_id)

    return _load


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "cache: Redis cache tests")
    config.addinivalue_line("markers", "slow: Slow tests")
