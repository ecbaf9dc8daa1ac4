"""
Seller Metrics Aggregation

Recomputes a seller's lifetime totals from the full order history rather
than applying deltas, so the row is correct after any sequence of order
writes, whatever order they were applied in. Cost is one aggregate scan of
the seller's orders per order write.

Bucket rules:
- completed: Delivered
- pending: New, Pending
- cancelled: Cancelled
- Shipped orders count toward total_orders only
- total_sales: sum of total_amount over Delivered orders
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional
import uuid

import structlog
from sqlalchemy import case, func, select, union, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.models import Order, OrderStatus, SellerMetrics
from marketplace.database.upsert import upsert_insert

logger = structlog.get_logger(__name__)

PENDING_STATUSES = (OrderStatus.NEW, OrderStatus.PENDING)

_CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Normalize a driver-returned amount to a 2-place Decimal"""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(_CENT)


@dataclass(frozen=True)
class SellerMetricsSnapshot:
    """Seller totals as derived from the orders table"""
    total_orders: int
    completed_orders: int
    pending_orders: int
    cancelled_orders: int
    total_sales: Decimal

    def as_values(self) -> dict:
        return asdict(self)


async def compute_seller_metrics(session: AsyncSession, seller_id: uuid.UUID) -> SellerMetricsSnapshot:
    """
    Derive a seller's totals straight from the orders table.

    Pending writes must be flushed first; the session does not autoflush.
    """
    delivered = Order.status == OrderStatus.DELIVERED

    query = select(
        func.count(Order.id).label("total_orders"),
        func.count(case((delivered, Order.id))).label("completed_orders"),
        func.count(case((Order.status.in_(PENDING_STATUSES), Order.id))).label("pending_orders"),
        func.count(case((Order.status == OrderStatus.CANCELLED, Order.id))).label("cancelled_orders"),
        func.coalesce(func.sum(case((delivered, Order.total_amount))), 0).label("total_sales"),
    ).where(Order.seller_id == seller_id)

    row = (await session.execute(query)).one()

    return SellerMetricsSnapshot(
        total_orders=row.total_orders or 0,
        completed_orders=row.completed_orders or 0,
        pending_orders=row.pending_orders or 0,
        cancelled_orders=row.cancelled_orders or 0,
        total_sales=to_money(row.total_sales),
    )


async def ensure_seller_metrics_row(session: AsyncSession, seller_id: uuid.UUID) -> None:
    """Create the all-zero metrics row for a seller; no-op when it exists"""
    table = SellerMetrics.__table__
    stmt = (
        upsert_insert(session, table)
        .values(id=uuid.uuid4(), profile_id=seller_id)
        .on_conflict_do_nothing(index_elements=[table.c.profile_id])
    )
    await session.execute(stmt)


async def refresh_seller_metrics(session: AsyncSession, seller_id: uuid.UUID) -> SellerMetricsSnapshot:
    """
    Bring a seller's SellerMetrics row in line with their orders.

    Runs inside the caller's transaction; any failure propagates so the
    triggering order write is rolled back with it.
    """
    await ensure_seller_metrics_row(session, seller_id)
    snapshot = await compute_seller_metrics(session, seller_id)

    await session.execute(
        update(SellerMetrics)
        .where(SellerMetrics.profile_id == seller_id)
        .values(**snapshot.as_values(), updated_at=datetime.now(timezone.utc))
    )

    logger.debug(
        "Seller metrics refreshed",
        seller_id=str(seller_id),
        total_orders=snapshot.total_orders,
        completed_orders=snapshot.completed_orders,
        pending_orders=snapshot.pending_orders,
        cancelled_orders=snapshot.cancelled_orders,
        total_sales=str(snapshot.total_sales),
    )
    return snapshot


async def rebuild_all_seller_metrics(
    session: AsyncSession,
    seller_ids: Optional[Iterable[uuid.UUID]] = None,
) -> int:
    """
    Replay the metrics refresh for many sellers.

    Without explicit ids, covers every seller that has orders or an existing
    metrics row (a seller whose orders were all deleted is reset to zero).

    Returns:
        Number of sellers refreshed
    """
    if seller_ids is None:
        sellers = union(
            select(Order.seller_id.label("seller_id")),
            select(SellerMetrics.profile_id.label("seller_id")),
        )
        result = await session.execute(select(sellers.subquery().c.seller_id))
        seller_ids = [row[0] for row in result.all()]

    count = 0
    for seller_id in seller_ids:
        await refresh_seller_metrics(session, seller_id)
        count += 1

    logger.info("Seller metrics rebuilt", sellers=count)
    return count
