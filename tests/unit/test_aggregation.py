"""
Unit Tests - Derived Aggregates
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from marketplace.aggregation.daily_sales import rebuild_daily_sales, record_daily_sale, sales_day
from marketplace.aggregation.seller_metrics import (
    compute_seller_metrics,
    rebuild_all_seller_metrics,
    refresh_seller_metrics,
    to_money,
)
from marketplace.database.models import DailySales, OrderStatus, SellerMetrics
from marketplace.database.repository import ScopedRepository
from marketplace.security.policies import Caller


async def metrics_for(session, seller_id) -> SellerMetrics:
    [metrics] = await ScopedRepository(session, Caller.user(seller_id)).list(SellerMetrics)
    return metrics


async def daily_for(session, seller_id):
    repo = ScopedRepository(session, Caller.user(seller_id))
    return await repo.list(DailySales, order_by=DailySales.date)


class TestSalesDay:
    """Tests for order timestamp truncation"""

    def test_utc_truncation(self):
        """Late UTC orders stay on their UTC day"""
        assert sales_day(datetime(2025, 3, 14, 23, 59, tzinfo=timezone.utc), "UTC") == date(2025, 3, 14)

    def test_naive_is_utc(self):
        """Naive timestamps are read as UTC"""
        assert sales_day(datetime(2025, 3, 14, 0, 0), "UTC") == date(2025, 3, 14)

    def test_configured_timezone(self):
        """A zone east of UTC moves late orders to the next day"""
        placed = datetime(2025, 3, 14, 20, 0, tzinfo=timezone.utc)

        assert sales_day(placed, "Asia/Kolkata") == date(2025, 3, 15)

    def test_default_uses_settings(self):
        """Without an explicit zone the configured one (UTC) applies"""
        assert sales_day(datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)) == date(2025, 3, 14)


class TestToMoney:
    """Tests for amount normalisation"""

    def test_float_rounded_to_cents(self):
        assert to_money(100.1) == Decimal("100.10")

    def test_none_is_zero(self):
        assert to_money(None) == Decimal("0.00")


class TestSellerMetrics:
    """Tests for the metrics recomputation"""

    async def test_no_orders(self, test_db, seller_a):
        """A seller without orders gets an all-zero row"""
        snapshot = await refresh_seller_metrics(test_db, seller_a)
        metrics = await metrics_for(test_db, seller_a)

        assert snapshot.total_orders == 0
        assert metrics.total_orders == 0
        assert metrics.total_sales == Decimal("0")

    async def test_buckets_by_status(self, test_db, seller_a, place):
        """Each status lands in its bucket; Shipped counts toward the total only"""
        await place(seller_a, "B-1", "10.00", OrderStatus.NEW)
        await place(seller_a, "B-2", "20.00", OrderStatus.PENDING)
        await place(seller_a, "B-3", "30.00", OrderStatus.SHIPPED)
        await place(seller_a, "B-4", "40.00", OrderStatus.DELIVERED)
        await place(seller_a, "B-5", "50.00", OrderStatus.DELIVERED)
        await place(seller_a, "B-6", "60.00", OrderStatus.CANCELLED)

        metrics = await metrics_for(test_db, seller_a)

        assert metrics.total_orders == 6
        assert metrics.completed_orders == 2
        assert metrics.pending_orders == 2
        assert metrics.cancelled_orders == 1
        assert metrics.total_sales == Decimal("90.00")
        # Shipped is in no bucket
        assert metrics.completed_orders + metrics.pending_orders + metrics.cancelled_orders == 5

    async def test_conservation_without_shipped(self, test_db, seller_a, place):
        """Without Shipped orders the buckets add up to the total"""
        await place(seller_a, "C-1", "15.00", OrderStatus.NEW)
        await place(seller_a, "C-2", "25.00", OrderStatus.DELIVERED)
        await place(seller_a, "C-3", "35.00", OrderStatus.CANCELLED)

        metrics = await metrics_for(test_db, seller_a)

        assert metrics.total_orders == (
            metrics.completed_orders + metrics.pending_orders + metrics.cancelled_orders
        )

    async def test_recompute_is_idempotent(self, test_db, seller_a, place):
        """Two recomputations with no writes between them agree"""
        await place(seller_a, "I-1", "12.50", OrderStatus.DELIVERED)
        await place(seller_a, "I-2", "7.25", OrderStatus.PENDING)

        first = await refresh_seller_metrics(test_db, seller_a)
        second = await refresh_seller_metrics(test_db, seller_a)

        assert first == second
        assert second == await compute_seller_metrics(test_db, seller_a)

    async def test_sellers_are_independent(self, test_db, seller_a, seller_b, place):
        """One seller's orders never show in another's metrics"""
        await place(seller_a, "S-1", "100.00", OrderStatus.DELIVERED)
        await place(seller_b, "S-2", "5.00", OrderStatus.NEW)

        metrics_a = await metrics_for(test_db, seller_a)
        metrics_b = await metrics_for(test_db, seller_b)

        assert (metrics_a.total_orders, metrics_a.total_sales) == (1, Decimal("100.00"))
        assert (metrics_b.total_orders, metrics_b.total_sales) == (1, Decimal("0"))

    async def test_single_row_per_seller(self, test_db, seller_a, place):
        """Repeated refreshes upsert the same row"""
        await place(seller_a, "U-1", "1.00")
        await place(seller_a, "U-2", "2.00")
        await refresh_seller_metrics(test_db, seller_a)

        result = await test_db.execute(select(SellerMetrics).where(SellerMetrics.profile_id == seller_a))

        assert len(result.scalars().all()) == 1

    async def test_rebuild_all(self, test_db, seller_a, seller_b, place):
        """The rebuild job covers every seller with orders"""
        await place(seller_a, "R-1", "10.00", OrderStatus.DELIVERED)
        await place(seller_b, "R-2", "20.00", OrderStatus.DELIVERED)

        assert await rebuild_all_seller_metrics(test_db) == 2
        assert (await metrics_for(test_db, seller_b)).total_sales == Decimal("20.00")


class TestDailySales:
    """Tests for the daily rollup"""

    async def test_first_order_creates_row(self, test_db, seller_a, place, order_day):
        """The first order of a day inserts the rollup row"""
        await place(seller_a, "D-1", "100.00")

        [row] = await daily_for(test_db, seller_a)

        assert row.date == order_day.date()
        assert row.total_sales == Decimal("100.00")
        assert row.total_orders == 1

    async def test_additive_within_day(self, test_db, seller_a, place, order_day):
        """N orders on one day give N orders and the sum of their amounts"""
        amounts = ["10.00", "20.50", "30.25", "0.25"]
        for i, amount in enumerate(amounts):
            await place(seller_a, f"A-{i}", amount, placed_at=order_day + timedelta(hours=i))

        [row] = await daily_for(test_db, seller_a)

        assert row.total_orders == len(amounts)
        assert row.total_sales == sum(Decimal(a) for a in amounts)

    async def test_separate_days(self, test_db, seller_a, place, order_day):
        """Orders on different days land in different rows"""
        await place(seller_a, "N-1", "5.00", placed_at=order_day)
        await place(seller_a, "N-2", "7.00", placed_at=order_day + timedelta(days=1))

        rows = await daily_for(test_db, seller_a)

        assert [(r.date, r.total_orders) for r in rows] == [
            (order_day.date(), 1),
            (order_day.date() + timedelta(days=1), 1),
        ]

    async def test_status_change_leaves_rollup(self, test_db, seller_a, place, service_orders):
        """Cancelling an order does not reduce the day's counters"""
        order = await place(seller_a, "X-1", "80.00")

        await service_orders.update_order_status(order.id, OrderStatus.CANCELLED)

        [row] = await daily_for(test_db, seller_a)
        assert (row.total_orders, row.total_sales) == (1, Decimal("80.00"))

    async def test_record_returns_day(self, test_db, seller_a):
        """The recorder reports the day it counted the sale on"""
        day = await record_daily_sale(
            test_db, seller_a, datetime(2025, 1, 1, 22, 0, tzinfo=timezone.utc), Decimal("3.00"), "Asia/Tokyo"
        )

        assert day == date(2025, 1, 2)

    async def test_rebuild_replays_orders(self, test_db, seller_a, place, order_day):
        """Rebuilding from orders reproduces the incremental rollup"""
        await place(seller_a, "RB-1", "10.00", placed_at=order_day)
        await place(seller_a, "RB-2", "15.00", placed_at=order_day + timedelta(hours=2))
        await place(seller_a, "RB-3", "20.00", placed_at=order_day + timedelta(days=1))
        before = [(r.date, r.total_sales, r.total_orders) for r in await daily_for(test_db, seller_a)]

        written = await rebuild_daily_sales(test_db, seller_a)
        after = [(r.date, r.total_sales, r.total_orders) for r in await daily_for(test_db, seller_a)]

        assert written == 2
        assert after == before

    async def test_rebuild_is_repeatable(self, test_db, seller_a, place):
        """Running the rebuild twice leaves the same rows"""
        await place(seller_a, "RR-1", "9.99")

        await rebuild_daily_sales(test_db)
        await rebuild_daily_sales(test_db)

        [row] = await daily_for(test_db, seller_a)
        assert (row.total_orders, row.total_sales) == (1, Decimal("9.99"))
