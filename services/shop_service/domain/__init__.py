"""Shop domain: cart, order and their value objects."""

from services.shop_service.domain.cart import Cart
from services.shop_service.domain.customer import Address, CompanyAddress, Customer
from services.shop_service.domain.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ShopError,
    ValidationError,
)
from services.shop_service.domain.items import LineItem
from services.shop_service.domain.order import Order, ShippingSelection

__all__ = [
    "Address",
    "Cart",
    "CompanyAddress",
    "ConflictError",
    "Customer",
    "LineItem",
    "NotFoundError",
    "Order",
    "PersistenceError",
    "ShippingSelection",
    "ShopError",
    "ValidationError",
]
