"""
Unit Tests - Unit of Work
"""
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from marketplace.database.connection import get_db
from marketplace.database.models import DailySales, Order, Profile, SellerMetrics
from marketplace.exceptions import PermissionDeniedError
from marketplace.security.policies import Caller
from marketplace.services.orders import OrderService, PlaceOrder
from marketplace.services.provisioning import Identity, provision_profile


async def count(model) -> int:
    async with get_db() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.fixture
async def committed_seller(test_engine) -> uuid.UUID:
    seller_id = uuid.uuid4()
    async with get_db() as db:
        await provision_profile(db, Identity(id=seller_id, email="uow@example.com"))
    return seller_id


def order_for(seller_id: uuid.UUID, number: str = "UOW-1") -> PlaceOrder:
    return PlaceOrder(
        order_number=number,
        seller_id=seller_id,
        customer_name="Nikhil",
        total_amount=Decimal("64.00"),
    )


class TestUnitOfWork:
    """Tests for commit and rollback around order commands"""

    async def test_order_and_aggregates_commit_together(self, committed_seller):
        async with get_db() as db:
            await OrderService(db, Caller.service()).place_order(order_for(committed_seller))

        assert await count(Order) == 1
        assert await count(SellerMetrics) == 1
        assert await count(DailySales) == 1

    async def test_failing_aggregation_rolls_back_order(self, committed_seller, monkeypatch):
        """No order is left behind when its metrics cannot be maintained"""

        async def broken_refresh(session, seller_id):
            raise RuntimeError("metrics unavailable")

        monkeypatch.setattr("marketplace.services.orders.refresh_seller_metrics", broken_refresh)

        with pytest.raises(RuntimeError):
            async with get_db() as db:
                await OrderService(db, Caller.service()).place_order(order_for(committed_seller))

        assert await count(Order) == 0
        assert await count(DailySales) == 0

    async def test_denied_write_rolls_back_block(self, test_engine):
        """A denied write undoes the earlier writes of the same block"""
        seller_id = uuid.uuid4()

        with pytest.raises(PermissionDeniedError):
            async with get_db() as db:
                await provision_profile(db, Identity(id=seller_id, email="rollback@example.com"))
                await OrderService(db, Caller.user(seller_id)).place_order(order_for(seller_id))

        assert await count(Profile) == 0

    async def test_get_db_requires_init(self):
        with pytest.raises(RuntimeError):
            async with get_db():
                pass
