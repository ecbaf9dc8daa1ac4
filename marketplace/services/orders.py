"""
Order Commands

Explicit command handlers replacing engine triggers: each command writes the
order and then runs the aggregation routines on the same session, so the
order and its derived rows commit or roll back as one unit of work.

- place_order: insert order + items, refresh seller metrics, add to the daily rollup
- update_order / update_order_status: update the order, refresh seller metrics
- delete_order: remove the order (items cascade), refresh seller metrics
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
import uuid

import structlog
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.aggregation.daily_sales import record_daily_sale
from marketplace.aggregation.seller_metrics import refresh_seller_metrics
from marketplace.database.models import Order, OrderItem, OrderStatus
from marketplace.database.repository import ScopedRepository
from marketplace.exceptions import InvalidStatusTransitionError
from marketplace.security.policies import Action, Caller, PolicyEvaluator

logger = structlog.get_logger(__name__)


# =============================================================================
# ORDER LIFECYCLE
# =============================================================================

# Forward path; skipping ahead is allowed
STATUS_SEQUENCE: List[OrderStatus] = [
    OrderStatus.NEW,
    OrderStatus.PENDING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    """
    Whether an order may move from `current` to `requested`.

    Setting the current status again is allowed. Otherwise terminal states
    never change, Cancelled is reachable from any other state, and the rest
    only move forward.
    """
    if current == requested:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if requested == OrderStatus.CANCELLED:
        return True
    return STATUS_SEQUENCE.index(requested) > STATUS_SEQUENCE.index(current)


# =============================================================================
# COMMANDS
# =============================================================================

class OrderLine(BaseModel):
    """Line item of a PlaceOrder command"""
    product_id: Optional[uuid.UUID] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0, decimal_places=2)
    total_price: Optional[Decimal] = Field(default=None, ge=0)

    @property
    def line_total(self) -> Decimal:
        if self.total_price is not None:
            return self.total_price
        return self.unit_price * self.quantity


class PlaceOrder(BaseModel):
    """Create an order for a seller"""
    order_number: str = Field(min_length=1)
    seller_id: uuid.UUID
    customer_name: str = Field(min_length=1)
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    status: OrderStatus = OrderStatus.NEW
    total_amount: Optional[Decimal] = Field(default=None, ge=0)
    shipping_address_id: Optional[uuid.UUID] = None
    placed_at: Optional[datetime] = None
    items: List[OrderLine] = Field(default_factory=list)

    @field_validator("placed_at")
    @classmethod
    def normalize_placed_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store and bucket placement times in UTC; naive values are UTC"""
        if v is None:
            return v
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def derive_total(self) -> "PlaceOrder":
        """Default the order total to the sum of its lines"""
        if self.total_amount is None:
            if not self.items:
                raise ValueError("total_amount is required for an order without items")
            self.total_amount = sum((line.line_total for line in self.items), Decimal("0"))
        return self


class OrderUpdate(BaseModel):
    """Mutable order fields; unset fields are left alone"""
    status: Optional[OrderStatus] = None
    customer_name: Optional[str] = Field(default=None, min_length=1)
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address_id: Optional[uuid.UUID] = None


# =============================================================================
# SERVICE
# =============================================================================

class OrderRepository(ScopedRepository):
    """Scoped repository allowed to write orders; used only by OrderService"""

    command_models = frozenset()


class OrderService:
    """
    Order command handler for one caller.

    Order rows are written through the scoped repository, so the ownership
    policies apply (sellers may read and update their own orders; only the
    service role may place or delete them). The aggregates are then written
    directly on the session: they are never writable by callers.

    Example:
        async with get_db() as db:
            order = await OrderService(db, Caller.service()).place_order(command)
    """

    def __init__(
        self,
        session: AsyncSession,
        caller: Caller,
        evaluator: Optional[PolicyEvaluator] = None,
    ):
        self.session = session
        self.caller = caller
        self.repository = OrderRepository(session, caller, evaluator)

    async def place_order(self, command: PlaceOrder) -> Order:
        placed_at = command.placed_at or datetime.now(timezone.utc)

        order = Order(
            id=uuid.uuid4(),
            order_number=command.order_number,
            seller_id=command.seller_id,
            customer_name=command.customer_name,
            customer_email=command.customer_email,
            customer_phone=command.customer_phone,
            status=command.status,
            total_amount=command.total_amount,
            shipping_address_id=command.shipping_address_id,
            created_at=placed_at,
            updated_at=placed_at,
        )
        await self.repository.add(order)

        for line in command.items:
            await self.repository.add(
                OrderItem(
                    order_id=order.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=line.line_total,
                )
            )

        await refresh_seller_metrics(self.session, order.seller_id)
        await record_daily_sale(self.session, order.seller_id, placed_at, order.total_amount)

        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            seller_id=str(order.seller_id),
            total_amount=str(order.total_amount),
            items=len(command.items),
        )
        return order

    async def update_order(self, order_id: uuid.UUID, changes: OrderUpdate) -> Order:
        values: Dict[str, object] = changes.model_dump(exclude_unset=True)

        if "status" in values:
            if values["status"] is None:
                raise ValueError("status cannot be cleared")
            current = await self.repository.get_for(Order, order_id, Action.UPDATE)
            previous = current.status
            if not can_transition(previous, values["status"]):
                raise InvalidStatusTransitionError(previous, values["status"])
        else:
            previous = None

        values["updated_at"] = datetime.now(timezone.utc)
        order = await self.repository.update(Order, order_id, values)
        await refresh_seller_metrics(self.session, order.seller_id)

        logger.info(
            "Order updated",
            order_id=str(order.id),
            seller_id=str(order.seller_id),
            fields=sorted(k for k in values if k != "updated_at"),
            previous_status=previous.value if previous else None,
            status=order.status.value,
        )
        return order

    async def update_order_status(self, order_id: uuid.UUID, status: OrderStatus) -> Order:
        return await self.update_order(order_id, OrderUpdate(status=status))

    async def delete_order(self, order_id: uuid.UUID) -> None:
        """Delete an order and its items; the daily rollup keeps counting it"""
        order = await self.repository.get_for(Order, order_id, Action.DELETE)
        seller_id = order.seller_id

        await self.repository.delete(Order, order_id)
        await refresh_seller_metrics(self.session, seller_id)

        logger.info("Order deleted", order_id=str(order_id), seller_id=str(seller_id))

    async def get_order(self, order_id: uuid.UUID) -> Optional[Order]:
        return await self.repository.get(Order, order_id)

    async def list_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        criteria = [Order.status == status] if status is not None else []
        return await self.repository.list(Order, *criteria, order_by=Order.created_at.desc())

    async def list_order_items(self, order_id: uuid.UUID) -> List[OrderItem]:
        return await self.repository.list(OrderItem, OrderItem.order_id == order_id)
