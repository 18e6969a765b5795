"""Shipping and payment method registries, plus the tax calculator hook.

These are collaborators of the order core, not part of it: the cart asks a
shipping method for its rate and a snapshot of its state, and checkout only
needs a payment method's id. Registries raise ``NotFoundError`` for unknown
ids; callers decide whether that is fatal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Iterable, Optional, Protocol

from libs.common.currency import Money
from services.shop_service.domain.errors import NotFoundError

if TYPE_CHECKING:
    from services.shop_service.domain.cart import Cart
    from services.shop_service.domain.customer import Customer
    from services.shop_service.domain.items import LineItem


# ---------------------------------------------------------------------------
# Shipping
# ---------------------------------------------------------------------------
class ShippingMethod(ABC):
    id: str
    name: str

    @abstractmethod
    def calculate(self, cart: "Cart") -> Money:
        """Rate for the cart in its current state."""

    def is_available(self, cart: "Cart") -> bool:
        return True

    def get_state(self) -> dict[str, Any]:
        """Serialisable snapshot stored on orders."""
        return {"id": self.id, "name": self.name}


class FlatRate(ShippingMethod):
    """Same rate for every cart, optionally per item."""

    def __init__(self, rate: Money, per_item: bool = False, id: str = "flat", name: str = "Flat rate"):
        self.id = id
        self.name = name
        self.rate = rate
        self.per_item = per_item

    def calculate(self, cart: "Cart") -> Money:
        if not self.per_item:
            return self.rate
        return self.rate * sum(item.quantity for item in cart.items.values())

    def get_state(self) -> dict[str, Any]:
        state = super().get_state()
        state.update(rate=self.rate.amount, currency=self.rate.currency, per_item=self.per_item)
        return state


class FreeShipping(ShippingMethod):
    """Free once the cart subtotal reaches ``minimum``."""

    def __init__(self, minimum: Money, id: str = "free_shipping", name: str = "Free shipping"):
        self.id = id
        self.name = name
        self.minimum = minimum

    def calculate(self, cart: "Cart") -> Money:
        return Money.zero(cart.currency)

    def is_available(self, cart: "Cart") -> bool:
        return cart.subtotal >= self.minimum

    def get_state(self) -> dict[str, Any]:
        state = super().get_state()
        state.update(minimum=self.minimum.amount, currency=self.minimum.currency)
        return state


class ShippingRegistry:
    def __init__(self, methods: Iterable[ShippingMethod] = ()):
        self._methods: dict[str, ShippingMethod] = {}
        for method in methods:
            self.register(method)

    def register(self, method: ShippingMethod) -> None:
        self._methods[method.id] = method

    def get(self, method_id: Optional[str]) -> ShippingMethod:
        try:
            return self._methods[method_id]
        except KeyError:
            raise NotFoundError(
                f'Shipping method "{method_id}" not found', {"method": method_id}
            ) from None

    def get_available(self, cart: "Cart") -> list[ShippingMethod]:
        return [m for m in self._methods.values() if m.is_available(cart)]


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------
class PaymentMethod:
    def __init__(self, id: str, name: str, enabled: bool = True):
        self.id = id
        self.name = name
        self.enabled = enabled

    def __repr__(self):
        return f"<PaymentMethod {self.id}>"


class PaymentRegistry:
    def __init__(self, methods: Iterable[PaymentMethod] = ()):
        self._methods: dict[str, PaymentMethod] = {}
        for method in methods:
            self.register(method)

    def register(self, method: PaymentMethod) -> None:
        self._methods[method.id] = method

    def get(self, method_id: Optional[str]) -> PaymentMethod:
        method = self._methods.get(method_id)
        if method is None or not method.enabled:
            raise NotFoundError(
                f'Payment method "{method_id}" not found', {"method": method_id}
            )
        return method

    def get_enabled(self) -> list[PaymentMethod]:
        return [m for m in self._methods.values() if m.enabled]


# ---------------------------------------------------------------------------
# Tax
# ---------------------------------------------------------------------------
class TaxCalculator(Protocol):
    """Computes an item's per-class taxes for a customer's destination.

    Rate tables live behind this hook, outside the shop core. Without a
    calculator, carts keep the tax amounts items were added with.
    """

    def calculate(self, item: "LineItem", customer: "Customer") -> dict[str, Money]:
        ...


# ---------------------------------------------------------------------------
# Process-wide registries (swap in tests)
# ---------------------------------------------------------------------------
_shipping_registry: Optional[ShippingRegistry] = None
_payment_registry: Optional[PaymentRegistry] = None


def get_shipping_registry() -> ShippingRegistry:
    global _shipping_registry
    if _shipping_registry is None:
        _shipping_registry = ShippingRegistry()
    return _shipping_registry


def set_shipping_registry(registry: Optional[ShippingRegistry]) -> None:
    global _shipping_registry
    _shipping_registry = registry


def get_payment_registry() -> PaymentRegistry:
    global _payment_registry
    if _payment_registry is None:
        _payment_registry = PaymentRegistry()
    return _payment_registry


def set_payment_registry(registry: Optional[PaymentRegistry]) -> None:
    global _payment_registry
    _payment_registry = registry


_tax_calculator: Optional[TaxCalculator] = None


def get_tax_calculator() -> Optional[TaxCalculator]:
    return _tax_calculator


def set_tax_calculator(calculator: Optional[TaxCalculator]) -> None:
    global _tax_calculator
    _tax_calculator = calculator
