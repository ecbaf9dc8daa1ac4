"""
Ownership Policies

Per-table predicates deciding which rows a caller may read or write. Every
policy targets authenticated callers and compares the row's owning-profile
reference with the caller's identity; order items are checked through their
parent order. The service role bypasses every policy and anonymous callers
are granted nothing.

Tables and actions without a policy are denied: there is deliberately no
insert or delete policy on orders, so only the service role can create or
remove them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Type
import uuid

import structlog
from sqlalchemy import ColumnElement, exists, false, or_, true

from marketplace.database.models import (
    Address,
    DailySales,
    Notification,
    Order,
    OrderItem,
    Product,
    Profile,
    SellerMetrics,
    SellerTip,
    Todo,
)
from marketplace.exceptions import PermissionDeniedError

logger = structlog.get_logger(__name__)


class Action(str, Enum):
    """Data access actions a policy can grant"""
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class CallerRole(str, Enum):
    """Roles attached to a request by the identity subsystem"""
    ANONYMOUS = "anon"
    AUTHENTICATED = "authenticated"
    SERVICE = "service_role"


@dataclass(frozen=True)
class Caller:
    """The identity every data access is attributed to"""
    user_id: Optional[uuid.UUID] = None
    role: CallerRole = CallerRole.ANONYMOUS

    @classmethod
    def user(cls, user_id: uuid.UUID) -> "Caller":
        return cls(user_id=user_id, role=CallerRole.AUTHENTICATED)

    @classmethod
    def service(cls) -> "Caller":
        return cls(role=CallerRole.SERVICE)

    @classmethod
    def anonymous(cls) -> "Caller":
        return cls()

    @property
    def is_service(self) -> bool:
        return self.role == CallerRole.SERVICE

    @property
    def is_authenticated(self) -> bool:
        return self.role == CallerRole.AUTHENTICATED and self.user_id is not None


ALL_ACTIONS: FrozenSet[Action] = frozenset(Action)


@dataclass(frozen=True)
class Policy:
    """
    A single grant on a table.

    Exactly one of `owner_column` (the row attribute compared with the
    caller), `via` (a custom SQL predicate) or `public` decides the rows
    the grant covers.
    """
    name: str
    actions: FrozenSet[Action]
    owner_column: Optional[str] = None
    via: Optional[Callable[[Caller], ColumnElement[bool]]] = None
    public: bool = False

    def applies_to(self, caller: Caller, action: Action) -> bool:
        return action in self.actions and caller.is_authenticated

    def predicate(self, model: Type, caller: Caller) -> ColumnElement[bool]:
        """SQL expression selecting the rows this grant covers"""
        if self.public:
            return true()
        if self.via is not None:
            return self.via(caller)
        return getattr(model, self.owner_column) == caller.user_id

    def permits(self, row: Mapping[str, Any], caller: Caller) -> bool:
        """Check a row's values in Python, for inserts and updated values"""
        if self.public:
            return True
        if self.owner_column is None:
            return False
        return row.get(self.owner_column) == caller.user_id


def _owns_parent_order(caller: Caller) -> ColumnElement[bool]:
    return exists().where(
        Order.id == OrderItem.order_id,
        Order.seller_id == caller.user_id,
    )


DEFAULT_POLICIES: Dict[Type, Tuple[Policy, ...]] = {
    Profile: (
        Policy("profile owner can read", frozenset({Action.SELECT}), owner_column="id"),
        Policy("profile owner can update", frozenset({Action.UPDATE}), owner_column="id"),
    ),
    Address: (
        Policy("profile owner manages addresses", ALL_ACTIONS, owner_column="profile_id"),
    ),
    Product: (
        Policy("seller manages own products", ALL_ACTIONS, owner_column="seller_id"),
    ),
    Order: (
        Policy("seller can read own orders", frozenset({Action.SELECT}), owner_column="seller_id"),
        Policy("seller can update own orders", frozenset({Action.UPDATE}), owner_column="seller_id"),
    ),
    OrderItem: (
        Policy("seller can read items of own orders", frozenset({Action.SELECT}), via=_owns_parent_order),
    ),
    Todo: (
        Policy("owner manages own todos", ALL_ACTIONS, owner_column="profile_id"),
    ),
    SellerMetrics: (
        Policy("seller can read own metrics", frozenset({Action.SELECT}), owner_column="profile_id"),
    ),
    DailySales: (
        Policy("seller can read own daily sales", frozenset({Action.SELECT}), owner_column="profile_id"),
    ),
    Notification: (
        Policy("owner can read notifications", frozenset({Action.SELECT}), owner_column="profile_id"),
        Policy("owner can update notifications", frozenset({Action.UPDATE}), owner_column="profile_id"),
    ),
    SellerTip: (
        Policy("authenticated callers can read tips", frozenset({Action.SELECT}), public=True),
    ),
}


@dataclass
class PolicyEvaluator:
    """
    Evaluates the policy table for a caller.

    `row_filter` is ANDed into every query issued through the scoped
    repository; `check_row` guards the values being written.

    Example:
        evaluator = PolicyEvaluator()
        stmt = select(Product).where(evaluator.row_filter(caller, Product, Action.SELECT))
    """
    policies: Dict[Type, Tuple[Policy, ...]] = field(default_factory=lambda: dict(DEFAULT_POLICIES))

    def applicable(self, caller: Caller, model: Type, action: Action) -> List[Policy]:
        return [p for p in self.policies.get(model, ()) if p.applies_to(caller, action)]

    def is_granted(self, caller: Caller, model: Type, action: Action) -> bool:
        """Whether any policy could allow this action for the caller at all"""
        return caller.is_service or bool(self.applicable(caller, model, action))

    def row_filter(self, caller: Caller, model: Type, action: Action) -> ColumnElement[bool]:
        """Rows of `model` the caller may act on; false() when nothing applies"""
        if caller.is_service:
            return true()
        policies = self.applicable(caller, model, action)
        if not policies:
            return false()
        return or_(*(p.predicate(model, caller) for p in policies))

    def require(self, caller: Caller, model: Type, action: Action) -> None:
        """Reject an action no policy grants to this caller"""
        if not self.is_granted(caller, model, action):
            logger.warning(
                "Write denied",
                table=model.__tablename__,
                action=action.value,
                role=caller.role.value,
                user_id=str(caller.user_id) if caller.user_id else None,
            )
            raise PermissionDeniedError(model.__tablename__, action.value, "no policy grants this action")

    def check_row(self, caller: Caller, model: Type, action: Action, row: Mapping[str, Any]) -> None:
        """Reject a write whose row values fall outside every applicable policy"""
        self.require(caller, model, action)
        if caller.is_service:
            return
        if any(p.permits(row, caller) for p in self.applicable(caller, model, action)):
            return
        logger.warning(
            "Write denied",
            table=model.__tablename__,
            action=action.value,
            user_id=str(caller.user_id),
            reason="row not owned by caller",
        )
        raise PermissionDeniedError(model.__tablename__, action.value, "row not owned by caller")
