"""Line items shared by carts and orders."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from libs.common.currency import Money, sum_money
from services.shop_service.domain.errors import ValidationError
from services.shop_service.models.enums import ItemType

# Item meta keys reserved for per-class tax amounts.
TAX_META_PREFIX = "tax_"


def validate_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(
            "Quantity must be a whole number", {"quantity": quantity}
        )
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", {"quantity": quantity})
    return quantity


class LineItem:
    """A priced line: product snapshot, quantity, per-class taxes and meta.

    ``id`` belongs to storage and stays ``None`` until the item is first
    persisted. ``name`` and ``price`` are a snapshot taken when the item was
    created; they are never refreshed from the live product.
    """

    def __init__(
        self,
        name: str,
        price: Money,
        quantity: int = 1,
        product_id: Optional[int] = None,
        item_type: ItemType = ItemType.PRODUCT,
        tax: Optional[Mapping[str, Money]] = None,
        meta: Optional[Mapping[str, str]] = None,
        id: Optional[int] = None,
    ):
        self.id = id
        self.name = name
        self.price = price
        self.quantity = validate_quantity(quantity)
        self.product_id = product_id
        self.type = ItemType(item_type)
        self.tax: dict[str, Money] = {}
        for tax_class, amount in (tax or {}).items():
            self.set_tax(tax_class, amount)
        self.meta: dict[str, str] = {}
        for key, value in (meta or {}).items():
            self.set_meta(key, value)

    @property
    def currency(self) -> str:
        return self.price.currency

    @property
    def subtotal(self) -> Money:
        return self.price * self.quantity

    @property
    def cost(self) -> Money:
        return self.subtotal

    @property
    def total_tax(self) -> Money:
        return sum_money(self.tax.values(), self.currency)

    def set_quantity(self, quantity: int, scale_tax: bool = True) -> None:
        """Change the quantity; taxes follow it pro rata unless told otherwise."""
        quantity = validate_quantity(quantity)
        if scale_tax and quantity != self.quantity:
            self.tax = {
                tax_class: amount.scale(quantity, self.quantity)
                for tax_class, amount in self.tax.items()
            }
        self.quantity = quantity

    def set_tax(self, tax_class: str, amount: Money) -> None:
        if not tax_class:
            raise ValidationError("Tax class name is required")
        if amount.currency != self.currency:
            raise ValidationError(
                "Tax currency differs from item price",
                {"tax_class": tax_class, "currency": amount.currency},
            )
        self.tax[tax_class] = amount

    def get_meta(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.meta.get(key, default)

    def set_meta(self, key: str, value: Any) -> None:
        if not key:
            raise ValidationError("Meta key is required")
        if key.startswith(TAX_META_PREFIX):
            raise ValidationError(
                f"Meta keys starting with '{TAX_META_PREFIX}' are reserved for taxes",
                {"key": key},
            )
        self.meta[key] = "" if value is None else str(value)

    def remove_meta(self, key: str) -> None:
        self.meta.pop(key, None)

    def copy(self, keep_id: bool = False) -> "LineItem":
        """Independent copy; storage identity is dropped unless asked for."""
        return LineItem(
            name=self.name,
            price=self.price,
            quantity=self.quantity,
            product_id=self.product_id,
            item_type=self.type,
            tax=dict(self.tax),
            meta=dict(self.meta),
            id=self.id if keep_id else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type.value,
            "name": self.name,
            "price": self.price.amount,
            "currency": self.currency,
            "quantity": self.quantity,
            "tax": {tax_class: amount.amount for tax_class, amount in self.tax.items()},
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LineItem":
        currency = data["currency"]
        return cls(
            id=data.get("id"),
            product_id=data.get("product_id"),
            item_type=ItemType(data.get("type", ItemType.PRODUCT.value)),
            name=data["name"],
            price=Money(int(data["price"]), currency),
            quantity=int(data["quantity"]),
            tax={k: Money(int(v), currency) for k, v in (data.get("tax") or {}).items()},
            meta=data.get("meta") or {},
        )

    def __repr__(self):
        return f"<LineItem {self.id} {self.name!r} qty={self.quantity} price={self.price}>"
