"""
Test Suite Configuration
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.connection import (
    build_session_factory,
    close_database,
    create_schema,
    init_database,
)
from marketplace.database.models import OrderStatus
from marketplace.security.policies import Caller
from marketplace.services.orders import OrderService, PlaceOrder
from marketplace.services.provisioning import Identity, provision_profile

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ORDER_DAY = datetime(2025, 3, 14, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
async def test_engine():
    """In-memory database with the full schema and foreign keys enforced"""
    engine = await init_database(TEST_DATABASE_URL)
    await create_schema()

    yield engine

    await close_database()


@pytest.fixture
async def test_db(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    session_factory = build_session_factory(test_engine)

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def seller_a(test_db) -> uuid.UUID:
    profile = await provision_profile(test_db, Identity(id=uuid.uuid4(), email="seller-a@example.com"))
    return profile.id


@pytest.fixture
async def seller_b(test_db) -> uuid.UUID:
    profile = await provision_profile(test_db, Identity(id=uuid.uuid4(), email="seller-b@example.com"))
    return profile.id


@pytest.fixture
def order_day() -> datetime:
    """Default placement time of orders created with `place`"""
    return ORDER_DAY


@pytest.fixture
def service_orders(test_db) -> OrderService:
    """Order commands run with the privileged service role"""
    return OrderService(test_db, Caller.service())


@pytest.fixture
def place(service_orders):
    """Place a simple order without line items"""

    async def _place(
        seller_id: uuid.UUID,
        number: str,
        amount: str,
        status: OrderStatus = OrderStatus.NEW,
        placed_at: Optional[datetime] = ORDER_DAY,
    ):
        return await service_orders.place_order(
            PlaceOrder(
                order_number=number,
                seller_id=seller_id,
                customer_name="Test Customer",
                status=status,
                total_amount=Decimal(amount),
                placed_at=placed_at,
            )
        )

    return _place
