"""Order aggregate.

An Order is created unsaved (``id`` and ``number`` are ``None``), usually from
a cart, and gets both on its first save. Totals are always derived from the
current items, discount and shipping selection; nothing is cached.

Status is a single current value. Any status may follow any other.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from libs.common.currency import DEFAULT_CURRENCY, Money, merge_taxes, sum_money
from libs.common.datetime_utils import utc_now
from services.shop_service.domain.customer import Customer, guest
from services.shop_service.domain.errors import ValidationError
from services.shop_service.domain.items import LineItem
from services.shop_service.models.enums import OrderStatus


def new_order_key() -> str:
    return f"order_{secrets.token_hex(8)}"


@dataclass(frozen=True)
class ShippingSelection:
    """Shipping method captured at checkout.

    ``state`` is the method's own serialisable snapshot; the order never looks
    the method up again in the live registry.
    """

    method_id: str
    rate: Money
    name: str = ""
    state: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "method_id": self.method_id,
            "name": self.name,
            "rate": self.rate.amount,
            "currency": self.rate.currency,
            "state": dict(self.state),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["ShippingSelection"]:
        if not data:
            return None
        return cls(
            method_id=data["method_id"],
            name=data.get("name") or "",
            rate=Money(int(data.get("rate") or 0), data.get("currency", DEFAULT_CURRENCY)),
            state=data.get("state") or {},
        )


class Order:
    def __init__(
        self,
        currency: str = DEFAULT_CURRENCY,
        status: Union[OrderStatus, str] = OrderStatus.PENDING,
        customer: Optional[Customer] = None,
        id: Optional[int] = None,
        number: Optional[int] = None,
        key: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.number = number
        self.key = key or new_order_key()
        self.currency = currency
        self.status = OrderStatus.parse(status)
        self.items: list[LineItem] = []
        self.customer = customer.snapshot() if customer is not None else guest()
        self.shipping: Optional[ShippingSelection] = None
        self.payment: Optional[str] = None
        self.coupons: list[str] = []
        self.discount = Money.zero(currency)
        self.customer_note = ""
        self.created_at = created_at or utc_now()
        self.updated_at = updated_at or self.created_at
        self.completed_at: Optional[datetime] = None

    @property
    def is_new(self) -> bool:
        return self.id is None

    @property
    def title(self) -> str:
        if self.number is None:
            return "Order"
        return f"Order #{self.number}"

    # -------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------
    def add_item(self, item: LineItem) -> LineItem:
        if item.currency != self.currency:
            raise ValidationError(
                "Item currency differs from order currency",
                {"item_currency": item.currency, "order_currency": self.currency},
            )
        if item.id is not None and self.find_item(item.id) is not None:
            raise ValidationError("Item already in order", {"item_id": item.id})
        self.items.append(item)
        return item

    def find_item(self, item_id: Optional[int]) -> Optional[LineItem]:
        if item_id is None:
            return None
        return next((i for i in self.items if i.id == item_id), None)

    def get_item(self, item_id: Optional[int]) -> LineItem:
        item = self.find_item(item_id)
        if item is None:
            raise ValidationError("Item not found in order", {"item_id": item_id})
        return item

    def remove_item(self, item_id: Optional[int]) -> LineItem:
        item = self.get_item(item_id)
        self.items.remove(item)
        return item

    def update_quantity(self, item_id: Optional[int], quantity: int) -> None:
        """Change an item's quantity; zero or less removes the item."""
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("Quantity must be a whole number", {"quantity": quantity})
        item = self.get_item(item_id)
        if quantity <= 0:
            self.items.remove(item)
        else:
            item.set_quantity(quantity)

    # -------------------------------------------------------------------
    # Header fields
    # -------------------------------------------------------------------
    def set_status(self, status: Union[OrderStatus, str]) -> None:
        try:
            self.status = OrderStatus.parse(status)
        except ValueError as exc:
            raise ValidationError(str(exc), {"status": status}) from exc
        if self.status is OrderStatus.COMPLETED and self.completed_at is None:
            self.completed_at = utc_now()

    def set_customer(self, customer: Customer) -> None:
        self.customer = customer.snapshot()

    def set_shipping(self, shipping: Optional[ShippingSelection]) -> None:
        if shipping is not None and shipping.rate.currency != self.currency:
            raise ValidationError("Shipping rate currency differs from order currency")
        self.shipping = shipping

    def set_payment(self, method_id: Optional[str]) -> None:
        self.payment = method_id

    def add_coupon(self, code: str) -> None:
        if code and code not in self.coupons:
            self.coupons.append(code)

    def set_discount(self, discount: Money) -> None:
        if discount.currency != self.currency:
            raise ValidationError("Discount currency differs from order currency")
        if discount.amount < 0:
            raise ValidationError("Discount cannot be negative")
        self.discount = discount

    # -------------------------------------------------------------------
    # Derived totals
    # -------------------------------------------------------------------
    @property
    def subtotal(self) -> Money:
        return sum_money((item.subtotal for item in self.items), self.currency)

    @property
    def tax(self) -> dict[str, Money]:
        return merge_taxes(*(item.tax for item in self.items))

    @property
    def total_tax(self) -> Money:
        return sum_money((item.total_tax for item in self.items), self.currency)

    @property
    def shipping_price(self) -> Money:
        return self.shipping.rate if self.shipping else Money.zero(self.currency)

    @property
    def total(self) -> Money:
        total = self.subtotal - self.discount + self.total_tax + self.shipping_price
        return total if total.amount > 0 else Money.zero(self.currency)

    # -------------------------------------------------------------------
    # Persistence projection
    # -------------------------------------------------------------------
    def get_state_to_save(self) -> dict[str, Any]:
        """Every field considered for persistence in this save cycle.

        This is not a change-set; the repository decides what differs.
        """
        return {
            "id": self.id,
            "number": self.number,
            "key": self.key,
            "title": self.title,
            "status": self.status,
            "customer_note": self.customer_note,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "items": self.items,
            "currency": self.currency,
            "customer": self.customer,
            "shipping": self.shipping,
            "payment": self.payment,
            "coupons": list(self.coupons),
            "discount": self.discount,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
        }

    def __repr__(self):
        return f"<Order {self.id} number={self.number} status={self.status.value}>"
