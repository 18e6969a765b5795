"""Enum definitions for shop service models."""

import enum
from typing import Optional


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def label(self) -> str:
        return self.value.replace("-", " ").title()

    @classmethod
    def parse(cls, value: "Optional[str | OrderStatus]") -> "OrderStatus":
        """Accept an enum member or its stored value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown order status: {value!r}") from None


class ItemType(str, enum.Enum):
    PRODUCT = "product"
    SHIPPING = "shipping"
    FEE = "fee"
