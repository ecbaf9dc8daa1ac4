"""
Scoped Repository

The data-access boundary for application code. Every read and write made
through it is attributed to a Caller and filtered by the ownership policies,
so rows outside the caller's scope are invisible and writes on them fail.

Reads populate existing identities: the aggregate tables are maintained with
bulk statements, so a previously loaded SellerMetrics or DailySales object
would otherwise keep stale values.
"""

from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Type, TypeVar
import uuid

import structlog
from sqlalchemy import Select, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.models import Order
from marketplace.exceptions import IntegrityViolationError, PermissionDeniedError, RecordNotFoundError
from marketplace.security.policies import Action, Caller, PolicyEvaluator

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT")


def row_values(obj: Any, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Column attribute values of a mapped object, with pending changes applied"""
    mapper = inspect(type(obj))
    values = {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}
    if overrides:
        values.update(overrides)
    return values


async def flush_or_raise(session: AsyncSession, table: str) -> None:
    """Flush pending writes, translating constraint failures"""
    try:
        await session.flush()
    except IntegrityError as e:
        logger.warning("Constraint violation", table=table, error=str(e.orig))
        raise IntegrityViolationError(f"Write to {table} violates a constraint: {e.orig}") from e


class ScopedRepository:
    """
    Policy-gated CRUD for any mapped table.

    Example:
        repo = ScopedRepository(session, Caller.user(seller_id))
        products = await repo.list(Product, Product.is_listed.is_(True))

    Writes to `command_models` are refused: their rows feed the derived
    aggregates, so they go through the owning service (OrderService).
    """

    command_models: FrozenSet[Type] = frozenset({Order})

    def __init__(
        self,
        session: AsyncSession,
        caller: Caller,
        evaluator: Optional[PolicyEvaluator] = None,
    ):
        self.session = session
        self.caller = caller
        self.evaluator = evaluator or PolicyEvaluator()

    def _check_writable(self, model: Type, action: Action) -> None:
        if model in self.command_models:
            logger.warning(
                "Write denied",
                table=model.__tablename__,
                action=action.value,
                reason="command table",
            )
            raise PermissionDeniedError(
                model.__tablename__, action.value, "write through the order commands instead"
            )

    def scoped(self, model: Type[ModelT], action: Action = Action.SELECT) -> Select:
        """SELECT over the rows the caller may act on"""
        return select(model).where(self.evaluator.row_filter(self.caller, model, action))

    async def list(
        self,
        model: Type[ModelT],
        *criteria,
        order_by=None,
        limit: Optional[int] = None,
    ) -> List[ModelT]:
        query = self.scoped(model)
        if criteria:
            query = query.where(*criteria)
        if order_by is not None:
            query = query.order_by(order_by)
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def get(self, model: Type[ModelT], row_id: uuid.UUID) -> Optional[ModelT]:
        """Fetch one visible row, or None when absent or out of scope"""
        query = self.scoped(model).where(model.id == row_id)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def get_for(self, model: Type[ModelT], row_id: uuid.UUID, action: Action) -> ModelT:
        """Load a row the caller may apply `action` to"""
        self.evaluator.require(self.caller, model, action)
        query = self.scoped(model, action).where(model.id == row_id)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        row = result.scalar_one_or_none()
        if row is None:
            raise RecordNotFoundError(model.__tablename__, row_id)
        return row

    async def add(self, obj: ModelT) -> ModelT:
        """Insert a new row after checking it against the insert policies"""
        model = type(obj)
        self._check_writable(model, Action.INSERT)
        self.evaluator.check_row(self.caller, model, Action.INSERT, row_values(obj))
        self.session.add(obj)
        await flush_or_raise(self.session, model.__tablename__)
        return obj

    async def update(self, model: Type[ModelT], row_id: uuid.UUID, values: Mapping[str, Any]) -> ModelT:
        """
        Apply `values` to a row in the caller's update scope.

        The new values are checked as well, so an owner cannot hand a row
        over to another profile.
        """
        columns = {attr.key for attr in inspect(model).column_attrs}
        unknown = set(values) - columns
        if unknown:
            raise ValueError(f"Unknown columns for {model.__tablename__}: {sorted(unknown)}")
        self._check_writable(model, Action.UPDATE)

        obj = await self.get_for(model, row_id, Action.UPDATE)
        self.evaluator.check_row(self.caller, model, Action.UPDATE, row_values(obj, values))

        for key, value in values.items():
            setattr(obj, key, value)
        await flush_or_raise(self.session, model.__tablename__)
        return obj

    async def delete(self, model: Type[ModelT], row_id: uuid.UUID) -> None:
        """
        Delete a row in the caller's delete scope.

        Dependent rows go through the database's ON DELETE CASCADE.
        """
        self._check_writable(model, Action.DELETE)
        obj = await self.get_for(model, row_id, Action.DELETE)
        await self.session.delete(obj)
        await flush_or_raise(self.session, model.__tablename__)
        logger.info("Row deleted", table=model.__tablename__, row_id=str(row_id))
