"""Shopping cart aggregate.

A cart belongs to one actor (a logged-in customer or an anonymous session).
Items are addressed by cart-local keys; storage ids only exist on orders.
Converting a cart to an order copies everything by value, see
``OrderRepository.create_from_cart``.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from libs.common.currency import DEFAULT_CURRENCY, Money, merge_taxes, sum_money
from libs.common.datetime_utils import parse_datetime, utc_now
from services.shop_service.domain.customer import Customer, guest
from services.shop_service.domain.errors import ValidationError
from services.shop_service.domain.items import LineItem

if TYPE_CHECKING:
    from services.shop_service.methods import ShippingMethod, TaxCalculator


def item_key(item: LineItem) -> str:
    """Same product with the same options shares a key (and a cart line)."""
    if item.product_id is None:
        return uuid.uuid4().hex[:12]
    if not item.meta:
        return f"product-{item.product_id}"
    digest = hashlib.md5(
        json.dumps(item.meta, sort_keys=True).encode("utf-8")
    ).hexdigest()[:8]
    return f"product-{item.product_id}-{digest}"


class Cart:
    def __init__(
        self,
        actor_key: str,
        currency: str = DEFAULT_CURRENCY,
        customer: Optional[Customer] = None,
        tax_calculator: Optional["TaxCalculator"] = None,
    ):
        self.id: Optional[int] = None
        self.actor_key = actor_key
        self.currency = currency
        self.items: dict[str, LineItem] = {}
        self.customer = customer if customer is not None else guest()
        self.shipping_method: Optional["ShippingMethod"] = None
        self.coupons: list[str] = []
        self.discount = Money.zero(currency)
        self.tax_calculator = tax_calculator
        self.created_at: datetime = utc_now()
        self.updated_at: datetime = self.created_at

    @property
    def is_empty(self) -> bool:
        return not self.items

    def _touch(self) -> None:
        self.updated_at = utc_now()

    # -------------------------------------------------------------------
    # Item management
    # -------------------------------------------------------------------
    def add_item(self, item: LineItem) -> str:
        """Add an item (or increase quantity if the same line exists)."""
        if item.currency != self.currency:
            raise ValidationError(
                "Item currency differs from cart currency",
                {"item_currency": item.currency, "cart_currency": self.currency},
            )
        key = item_key(item)
        existing = self.items.get(key)
        if existing is not None:
            existing.set_quantity(existing.quantity + item.quantity, scale_tax=False)
            for tax_class, amount in merge_taxes(existing.tax, item.tax).items():
                existing.set_tax(tax_class, amount)
            self._apply_tax(existing)
        else:
            self.items[key] = item
            self._apply_tax(item)
        self._touch()
        return key

    def get_item(self, key: str) -> LineItem:
        item = self.items.get(str(key))
        if item is None:
            raise ValidationError("Item not found in cart", {"item": key})
        return item

    def remove_item(self, key: str) -> LineItem:
        item = self.get_item(key)
        del self.items[str(key)]
        self._touch()
        return item

    def update_quantity(self, key: str, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("Quantity must be a whole number", {"quantity": quantity})
        item = self.get_item(key)
        if quantity <= 0:
            del self.items[str(key)]
        else:
            item.set_quantity(quantity)
            self._apply_tax(item)
        self._touch()

    def clear(self) -> None:
        self.items.clear()
        self.shipping_method = None
        self.coupons = []
        self.discount = Money.zero(self.currency)
        self._touch()

    # -------------------------------------------------------------------
    # Shipping, coupons, destination
    # -------------------------------------------------------------------
    def set_shipping_method(self, method: Optional["ShippingMethod"]) -> None:
        self.shipping_method = method
        self._touch()

    def add_coupon(self, code: str) -> None:
        if not code:
            raise ValidationError("Coupon code is required")
        if code in self.coupons:
            raise ValidationError("Coupon already applied", {"coupon": code})
        self.coupons.append(code)
        self._touch()

    def set_discount(self, discount: Money) -> None:
        if discount.currency != self.currency or discount.amount < 0:
            raise ValidationError("Invalid discount", {"discount": str(discount)})
        self.discount = discount
        self._touch()

    def change_destination(
        self,
        country: Optional[str] = None,
        state: Optional[str] = None,
        postcode: Optional[str] = None,
    ) -> None:
        """Update the shipping destination and re-tax every line."""
        if country is not None:
            self.customer.set_country(country)
        if state is not None:
            self.customer.set_state(state)
        if postcode is not None:
            self.customer.set_postcode(postcode)
        self.recalculate()

    # -------------------------------------------------------------------
    # Totals
    # -------------------------------------------------------------------
    def _apply_tax(self, item: LineItem) -> None:
        if self.tax_calculator is None:
            return
        item.tax = {}
        for tax_class, amount in self.tax_calculator.calculate(item, self.customer).items():
            item.set_tax(tax_class, amount)

    def recalculate(self) -> None:
        for item in self.items.values():
            self._apply_tax(item)
        self._touch()

    @property
    def subtotal(self) -> Money:
        return sum_money((i.subtotal for i in self.items.values()), self.currency)

    @property
    def tax(self) -> dict[str, Money]:
        return merge_taxes(*(i.tax for i in self.items.values()))

    @property
    def total_tax(self) -> Money:
        return sum_money((i.total_tax for i in self.items.values()), self.currency)

    @property
    def shipping_price(self) -> Money:
        if self.shipping_method is None:
            return Money.zero(self.currency)
        return self.shipping_method.calculate(self)

    @property
    def total(self) -> Money:
        total = self.subtotal - self.discount + self.total_tax + self.shipping_price
        return total if total.amount > 0 else Money.zero(self.currency)

    # -------------------------------------------------------------------
    # Serialisation (cart store payload)
    # -------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        return {
            "currency": self.currency,
            "items": {key: item.to_dict() for key, item in self.items.items()},
            "shipping_method": self.shipping_method.id if self.shipping_method else None,
            "customer": self.customer.to_dict(),
            "coupons": list(self.coupons),
            "discount": self.discount.amount,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(
        cls,
        actor_key: str,
        data: dict[str, Any],
        tax_calculator: Optional["TaxCalculator"] = None,
    ) -> "Cart":
        """Rebuild a cart; the shipping method id is resolved by the caller."""
        currency = data.get("currency", DEFAULT_CURRENCY)
        cart = cls(
            actor_key,
            currency=currency,
            customer=Customer.from_dict(data.get("customer")),
            tax_calculator=tax_calculator,
        )
        cart.items = {
            key: LineItem.from_dict(item) for key, item in (data.get("items") or {}).items()
        }
        cart.coupons = list(data.get("coupons") or [])
        cart.discount = Money(int(data.get("discount") or 0), currency)
        cart.created_at = parse_datetime(data.get("created_at")) or cart.created_at
        cart.updated_at = parse_datetime(data.get("updated_at")) or cart.updated_at
        return cart

    def __repr__(self):
        return f"<Cart {self.actor_key} items={len(self.items)}>"
