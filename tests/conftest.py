"""Shared test fixtures.

Provides:
- A file-backed SQLite database (aiosqlite) with all tables created
- session_factory in the same async-generator shape the app uses
- Seed rows for the d1 dispatch scenario (customer, quote, drivers, order)
- Settings with HubSpot configured and JWT helpers per role
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

import src.logistics.ledger.models  # noqa: F401
from src.logistics.config import Settings
from src.logistics.core.database import Base
from src.logistics.core.security import create_access_token
from src.logistics.orders.models import CustomerModel, DriverModel, OrderModel, QuoteModel
from src.logistics.orders.state_machine import OrderStatus


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    db_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'logistics.db'}",
        poolclass=NullPool,
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine):
    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    return factory


async def add_rows(engine: AsyncEngine, *rows) -> None:
    async with AsyncSession(engine) as session:
        for row in rows:
            session.add(row)
            await session.flush()
        await session.commit()


@pytest.fixture
def insert_rows(engine: AsyncEngine):
    """Insert extra model rows: await insert_rows(DriverModel(...), ...)."""

    async def _insert(*rows) -> None:
        await add_rows(engine, *rows)

    return _insert


@pytest_asyncio.fixture
async def seeded(engine: AsyncEngine) -> dict:
    """Customer c1, quote q1, drivers d1/d2, order o1 (ReadyForDispatch, deal 901)."""
    await add_rows(
        engine,
        CustomerModel(
            id="c1",
            email="ann@example.com",
            name="Ann Smith",
            phone="+1 (555) 123-4567",
            hubspot_contact_id="501",
        ),
        QuoteModel(
            id="q1",
            customer_id="c1",
            pickup_address="1 Main St",
            dropoff_address="9 Elm St",
            distance_mi=4.2,
            price_total=Decimal("125.00"),
        ),
        DriverModel(id="d1", name="Dana Diaz", phone="555-0101", vehicle_type="van"),
        DriverModel(id="d2", name="Sam Lee", phone="555-0102", vehicle_type="car"),
        OrderModel(
            id="o1",
            status=OrderStatus.READY_FOR_DISPATCH.value,
            price_total=Decimal("125.00"),
            currency="usd",
            customer_id="c1",
            quote_id="q1",
            hubspot_deal_id="901",
            hubspot_metadata={
                "special_delivery_instructions": "Leave at back door",
                "recurring_frequency": "weekly",
                "rush_requested": True,
            },
            stripe_checkout_session_id="cs_test_seed",
        ),
    )
    return {"customer_id": "c1", "quote_id": "q1", "order_id": "o1", "driver_id": "d1"}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        HUBSPOT_PRIVATE_APP_TOKEN="test-token",
        HUBSPOT_WEBHOOK_SECRET="hubspot-secret",
        STRIPE_WEBHOOK_SECRET="whsec_test",
        HUBSPOT_API_BASE_URL="https://hubspot.test",
    )


@pytest.fixture
def auth_headers():
    """Build a bearer header for a role, e.g. auth_headers("driver", driver_id="d1")."""

    def _headers(role: str, **claims) -> dict[str, str]:
        token = create_access_token({"sub": f"{role}-user", "role": role, **claims})
        return {"Authorization": f"Bearer {token}"}

    return _headers
