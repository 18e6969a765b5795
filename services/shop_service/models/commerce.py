"""Shop persistence tables: orders, order items, their meta rows, counters, carts.

Money columns hold integer minor units. Item taxes are kept per tax class in
``shop_order_item_meta`` under ``tax_<class>`` keys; ``tax`` on the item row
is their sum, denormalised for reporting.
"""

from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.shop_service.models.enums import ItemType, OrderStatus, enum_values
from sqlalchemy import JSON, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

# ============================================================================
# ORDER MODELS
# ============================================================================


class OrderRecord(Base):
    """Order header row."""

    __tablename__ = "shop_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Human-facing number, assigned once on first save
    number: Mapped[Optional[int]] = mapped_column(
        Integer, unique=True, nullable=True, index=True
    )
    key: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="shop_order_status_enum",
        ),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    customer_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        Index("ix_shop_orders_status_created_at", "status", "created_at"),
    )

    def __repr__(self):
        return f"<OrderRecord {self.id} number={self.number} status={self.status}>"


class OrderMetaRecord(Base):
    """Key/value side-store for order fields without a dedicated column."""

    __tablename__ = "shop_order_meta"

    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("shop_orders.id", ondelete="CASCADE"),
        primary_key=True,
    )
    meta_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    meta_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self):
        return f"<OrderMetaRecord {self.order_id}:{self.meta_key}>"


class OrderItemRecord(Base):
    """Order line items (snapshot at order time, independent of the product)."""

    __tablename__ = "shop_order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("shop_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # No FK: the product may be deleted after the order is placed
    product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    product_type: Mapped[ItemType] = mapped_column(
        SAEnum(
            ItemType,
            values_callable=enum_values,
            name="shop_order_item_type_enum",
        ),
        default=ItemType.PRODUCT,
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    tax: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (CheckConstraint("quantity > 0", name="positive_quantity"),)

    def __repr__(self):
        return f"<OrderItemRecord {self.title} qty={self.quantity}>"


class OrderItemMetaRecord(Base):
    """Per-item meta rows; one row per (item, key)."""

    __tablename__ = "shop_order_item_meta"

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("shop_order_items.id", ondelete="CASCADE"),
        primary_key=True,
    )
    meta_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    meta_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self):
        return f"<OrderItemMetaRecord {self.item_id}:{self.meta_key}>"


class CounterRecord(Base):
    """Named monotonic counters (order numbers)."""

    __tablename__ = "shop_counters"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self):
        return f"<CounterRecord {self.name}={self.value}>"


# ============================================================================
# CART MODELS
# ============================================================================


class CartRecord(Base):
    """Shopping cart, one per actor, stored as a JSON payload."""

    __tablename__ = "shop_carts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # "customer:<id>" for logged in, "session:<id>" for guests
    actor_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<CartRecord {self.actor_key}>"
