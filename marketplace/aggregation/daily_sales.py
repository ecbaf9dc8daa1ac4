"""
Daily Sales Rollup

Maintains one DailySales row per seller per calendar day with a single
atomic INSERT ... ON CONFLICT DO UPDATE, so concurrent orders for the same
seller and day cannot lose increments.

The rollup counts orders placed: it only runs when an order is inserted,
and later status changes (including cancellation) leave it untouched.
"""

from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Optional, Tuple
from zoneinfo import ZoneInfo
import uuid

import structlog
from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.aggregation.seller_metrics import to_money
from marketplace.config import get_settings
from marketplace.database.models import DailySales, Order
from marketplace.database.upsert import upsert_insert

logger = structlog.get_logger(__name__)


def sales_day(created_at: datetime, timezone_name: Optional[str] = None) -> date:
    """
    Truncate an order timestamp to its sales day.

    Naive timestamps are taken as UTC, which is how they come back from
    SQLite.
    """
    zone = ZoneInfo(timezone_name or get_settings().marketplace.rollup_timezone)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.astimezone(zone).date()


async def record_daily_sale(
    session: AsyncSession,
    seller_id: uuid.UUID,
    created_at: datetime,
    amount: Decimal,
    timezone_name: Optional[str] = None,
) -> date:
    """
    Add one order to the seller's rollup for the order's day.

    Returns:
        The sales day the order was counted on
    """
    day = sales_day(created_at, timezone_name)
    table = DailySales.__table__

    stmt = upsert_insert(session, table).values(
        id=uuid.uuid4(),
        profile_id=seller_id,
        date=day,
        total_sales=amount,
        total_orders=1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.profile_id, table.c.date],
        set_={
            "total_sales": table.c.total_sales + stmt.excluded.total_sales,
            "total_orders": table.c.total_orders + 1,
        },
    )
    await session.execute(stmt)

    logger.debug("Daily sales recorded", seller_id=str(seller_id), day=day.isoformat(), amount=str(amount))
    return day


async def rebuild_daily_sales(
    session: AsyncSession,
    seller_id: Optional[uuid.UUID] = None,
    timezone_name: Optional[str] = None,
) -> int:
    """
    Recompute daily rows from every order placed.

    Replaces the existing rows for one seller (or all sellers) so the result
    is the same however many times it runs.

    Returns:
        Number of daily rows written
    """
    removal = delete(DailySales)
    query = select(Order.seller_id, Order.created_at, Order.total_amount)
    if seller_id is not None:
        removal = removal.where(DailySales.profile_id == seller_id)
        query = query.where(Order.seller_id == seller_id)

    await session.execute(removal.execution_options(synchronize_session="fetch"))

    buckets: Dict[Tuple[uuid.UUID, date], list] = defaultdict(lambda: [Decimal("0.00"), 0])
    result = await session.execute(query)
    for order_seller, created_at, total_amount in result.all():
        bucket = buckets[(order_seller, sales_day(created_at, timezone_name))]
        bucket[0] += to_money(total_amount)
        bucket[1] += 1

    rows = [
        {
            "id": uuid.uuid4(),
            "profile_id": order_seller,
            "date": day,
            "total_sales": total_sales,
            "total_orders": total_orders,
        }
        for (order_seller, day), (total_sales, total_orders) in buckets.items()
    ]
    if rows:
        await session.execute(insert(DailySales.__table__), rows)

    logger.info(
        "Daily sales rebuilt",
        seller_id=str(seller_id) if seller_id else None,
        rows=len(rows),
    )
    return len(rows)
