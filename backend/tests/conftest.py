"""
Pytest fixtures for the inventory test suite.

Provides:
- A fresh file-backed SQLite database per test (aiosqlite, WAL mode)
- Service instances bound to that database
- An httpx client against the FastAPI app with auth and services overridden

Environment variables are set before any application module is imported so
the module-level engine never points at a real server.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./inventory_test_unused.db"
os.environ["LOW_STOCK_MONITOR_ENABLED"] = "false"
os.environ["AGGREGATE_CACHE_TTL_SECONDS"] = "0"

from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi import HTTPException, status
from httpx import ASGITransport, AsyncClient

from core.auth import current_active_superuser, current_active_user
from db.database import build_engine, build_session_maker, create_db_and_tables, get_async_session
from db.warehouse import Warehouse, warehouse_key
from services import ledger
from services.aggregation import AggregationView, get_aggregation_view
from services.audit import AuditLog, get_audit_log
from services.transfers import TransferCoordinator, get_transfer_coordinator


@pytest.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'inventory.db'}", echo=False)
    await create_db_and_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def view():
    return AggregationView()


@pytest.fixture
def audit(session_maker):
    return AuditLog(session_maker)


@pytest.fixture
def sleeps():
    """Delays requested by the transfer retry loop."""
    return []


@pytest.fixture
def coordinator(view, audit, sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return TransferCoordinator(view, audit, max_retries=3, backoff_seconds=0.05, sleep=fake_sleep)


@pytest.fixture
def seed_stock(session_maker):
    """
    Create warehouses and stock records in one committed transaction.

    records: (item name, warehouse, quantity, low stock threshold)
    """

    async def _seed(*warehouses, records=()):
        async with session_maker() as session:
            for name in warehouses:
                session.add(Warehouse(name=name, name_key=warehouse_key(name)))
            await session.flush()
            for name, wh, qty, threshold in records:
                await ledger.add_stock(session, name, wh, qty, default_threshold=threshold)
            await session.commit()

    return _seed


@pytest.fixture
def record_of(session_maker):
    """Fresh read of one stock record, outside any test session."""

    async def _get(name, warehouse):
        async with session_maker() as session:
            return await ledger.get(session, name, warehouse)

    return _get


@pytest.fixture
def admin_user():
    return SimpleNamespace(id=uuid4(), email="admin@example.com", is_active=True, is_superuser=True)


@pytest.fixture
def viewer_user():
    return SimpleNamespace(id=uuid4(), email="viewer@example.com", is_active=True, is_superuser=False)


@pytest.fixture
def actor(admin_user):
    """The user the API client acts as; tests may swap ``actor.user``."""
    return SimpleNamespace(user=admin_user)


@pytest.fixture
async def client(session_maker, view, audit, coordinator, actor):
    from main import app

    async def _session():
        async with session_maker() as session:
            yield session

    def _active_user():
        return actor.user

    def _superuser():
        if not actor.user.is_superuser:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="FORBIDDEN")
        return actor.user

    app.dependency_overrides[get_async_session] = _session
    app.dependency_overrides[current_active_user] = _active_user
    app.dependency_overrides[current_active_superuser] = _superuser
    app.dependency_overrides[get_aggregation_view] = lambda: view
    app.dependency_overrides[get_audit_log] = lambda: audit
    app.dependency_overrides[get_transfer_coordinator] = lambda: coordinator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        follow_redirects=True,
    ) as c:
        yield c

    app.dependency_overrides.clear()
