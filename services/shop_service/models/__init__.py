"""Shop Service models package."""

from services.shop_service.models.commerce import (
    CartRecord,
    CounterRecord,
    OrderItemMetaRecord,
    OrderItemRecord,
    OrderMetaRecord,
    OrderRecord,
)
from services.shop_service.models.enums import ItemType, OrderStatus

__all__ = [
    "CartRecord",
    "CounterRecord",
    "ItemType",
    "OrderItemMetaRecord",
    "OrderItemRecord",
    "OrderMetaRecord",
    "OrderRecord",
    "OrderStatus",
]
