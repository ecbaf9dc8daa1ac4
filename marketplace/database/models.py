"""
Database Models - Marketplace Entity Store

Transactional tables:
- Profile: one account per identity (seller or customer)
- Address, Product, Order, OrderItem, Todo, Notification: rows owned by a profile

Derived tables (written only by the aggregation routines):
- SellerMetrics: lifetime totals per seller
- DailySales: per-seller per-day rollup

Reference data:
- SellerTip: globally readable educational content

Every owned row references its profile with ON DELETE CASCADE, and order
items cascade with their order.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
import uuid

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _enum_values(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


# =============================================================================
# ENUMERATIONS
# =============================================================================

class OrderStatus(str, Enum):
    """Order status enumeration"""
    NEW = "New"
    PENDING = "Pending"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class ProductCategory(str, Enum):
    """Product category enumeration"""
    SEEDS = "Seeds"
    FERTILIZERS = "Fertilizers"
    EQUIPMENT = "Equipment"
    TOOLS = "Tools"
    ACCESSORIES = "Accessories"
    IRRIGATION = "Irrigation"
    PESTICIDES = "Pesticides"
    OTHERS = "Others"


# =============================================================================
# ACCOUNTS
# =============================================================================

class Profile(Base):
    """
    Profile Table

    One row per user identity. The primary key is the identity id issued by
    the identity subsystem, so it has no default.
    """
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(Text, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(Text)
    phone_number: Mapped[Optional[str]] = mapped_column(Text)
    business_name: Mapped[Optional[str]] = mapped_column(Text)
    gst_number: Mapped[Optional[str]] = mapped_column(Text)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    addresses: Mapped[List["Address"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan", passive_deletes=True
    )
    products: Mapped[List["Product"]] = relationship(
        back_populates="seller", cascade="all, delete-orphan", passive_deletes=True
    )
    orders: Mapped[List["Order"]] = relationship(
        back_populates="seller", cascade="all, delete-orphan", passive_deletes=True
    )
    todos: Mapped[List["Todo"]] = relationship(cascade="all, delete-orphan", passive_deletes=True)
    notifications: Mapped[List["Notification"]] = relationship(
        cascade="all, delete-orphan", passive_deletes=True
    )


class Address(Base):
    """Shipping address owned by a profile"""
    __tablename__ = "addresses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    address_line1: Mapped[str] = mapped_column(Text, nullable=False)
    address_line2: Mapped[Optional[str]] = mapped_column(Text)
    city: Mapped[str] = mapped_column(Text, nullable=False)
    state: Mapped[str] = mapped_column(Text, nullable=False)
    postal_code: Mapped[str] = mapped_column(Text, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    profile: Mapped["Profile"] = relationship(back_populates="addresses")

    __table_args__ = (
        Index("ix_addresses_profile", "profile_id"),
    )


# =============================================================================
# CATALOG & ORDERS
# =============================================================================

class Product(Base):
    """
    Product Table

    A listing owned by a seller, with pricing, stock and listing flags.
    """
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )

    # Product details
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[ProductCategory] = mapped_column(
        SQLEnum(ProductCategory, name="product_category", values_callable=_enum_values),
        nullable=False,
    )
    image_url: Mapped[Optional[str]] = mapped_column(Text)

    # Pricing and inventory
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Listing flags
    is_listed: Mapped[bool] = mapped_column(Boolean, default=True)
    is_best_priced: Mapped[bool] = mapped_column(Boolean, default=False)
    is_high_priced: Mapped[bool] = mapped_column(Boolean, default=False)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    seller: Mapped["Profile"] = relationship(back_populates="products")

    __table_args__ = (
        Index("ix_products_seller", "seller_id"),
        Index("ix_products_category", "category"),
    )


class Order(Base):
    """
    Order Table

    Source of truth for the seller aggregates. Status moves
    New -> Pending -> Shipped -> Delivered, or to Cancelled before delivery.
    """
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )

    # Customer contact
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(Text)
    customer_phone: Mapped[Optional[str]] = mapped_column(Text)

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.NEW,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    shipping_address_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("addresses.id")
    )

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    seller: Mapped["Profile"] = relationship(back_populates="orders")
    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_orders_seller", "seller_id"),
        Index("ix_orders_seller_status", "seller_id", "status"),
    )


class OrderItem(Base):
    """Line item of an order; immutable once written"""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("products.id")
    )

    # Measures
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    order: Mapped["Order"] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_order_items_order", "order_id"),
    )


# =============================================================================
# SELLER WORKSPACE
# =============================================================================

class Todo(Base):
    """Seller task"""
    __tablename__ = "todos"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Notification(Base):
    """Message addressed to a profile"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_notifications_profile", "profile_id"),
    )


class SellerTip(Base):
    """Static educational content, readable by every authenticated caller"""
    __tablename__ = "seller_tips"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# =============================================================================
# DERIVED AGGREGATES
# =============================================================================

class SellerMetrics(Base):
    """
    Seller Metrics Aggregate Table

    Lifetime totals per seller, recomputed from the full order history by
    marketplace.aggregation.seller_metrics after every order write.
    """
    __tablename__ = "seller_metrics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )

    # Measures
    total_sales: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    completed_orders: Mapped[int] = mapped_column(Integer, default=0)
    pending_orders: Mapped[int] = mapped_column(Integer, default=0)
    cancelled_orders: Mapped[int] = mapped_column(Integer, default=0)
    average_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=0)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("profile_id", name="uq_seller_metrics_profile"),
    )


class DailySales(Base):
    """
    Daily Sales Aggregate Table

    Grain: one row per seller per calendar day. Counts orders placed, so
    later cancellations do not reduce it.
    """
    __tablename__ = "daily_sales"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    # Unannotated: the attribute name shadows datetime.date
    date = mapped_column(Date, nullable=False)

    # Measures
    total_sales: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    total_orders: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("profile_id", "date", name="uq_daily_sales_profile_date"),
        Index("ix_daily_sales_date", "date"),
    )
