"""Per-actor cart persistence.

Each actor (``customer:<id>`` or ``session:<id>``) owns at most one cart,
stored as a JSON payload. Two requests for the same actor that both modify the
cart race; the later save wins.
"""

from typing import Optional

from libs.common.config import Settings, get_settings
from libs.common.logging import get_logger
from services.shop_service.domain.cart import Cart
from services.shop_service.domain.customer import Customer
from services.shop_service.domain.errors import NotFoundError, ValidationError
from services.shop_service.messages import Messages
from services.shop_service.methods import ShippingRegistry, TaxCalculator, get_shipping_registry
from services.shop_service.storage.base import Storage

logger = get_logger(__name__)


def customer_actor(customer_id) -> str:
    return f"customer:{customer_id}"


def session_actor(session_id: str) -> str:
    return f"session:{session_id}"


class CartStore:
    def __init__(
        self,
        storage: Storage,
        shipping_registry: Optional[ShippingRegistry] = None,
        tax_calculator: Optional[TaxCalculator] = None,
        messages: Optional[Messages] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.shipping_registry = shipping_registry or get_shipping_registry()
        self.tax_calculator = tax_calculator
        self.messages = messages if messages is not None else Messages()
        self.settings = settings or get_settings()

    async def get(self, actor_key: str, customer: Optional[Customer] = None) -> Cart:
        """Load the actor's cart, creating an empty one on first access."""
        if not actor_key:
            raise ValidationError("Cart owner is required")

        async with self.storage.transaction() as tx:
            payload = await tx.fetch_cart(actor_key)
            if payload is None:
                cart = Cart(
                    actor_key,
                    currency=self.settings.CURRENCY,
                    customer=customer,
                    tax_calculator=self.tax_calculator,
                )
                cart.id = await tx.save_cart(actor_key, cart.to_dict())
                logger.debug("Created cart for %s", actor_key)
                return cart

        cart = Cart.from_dict(actor_key, payload, tax_calculator=self.tax_calculator)
        method_id = payload.get("shipping_method")
        if method_id:
            try:
                cart.shipping_method = self.shipping_registry.get(method_id)
            except NotFoundError:
                self.messages.add_warning(
                    f'Shipping method "{method_id}" is no longer available, please select another one.'
                )
        return cart

    async def save(self, cart: Cart) -> Cart:
        async with self.storage.transaction() as tx:
            cart.id = await tx.save_cart(cart.actor_key, cart.to_dict())
        return cart

    async def clear(self, actor_key: str) -> None:
        async with self.storage.transaction() as tx:
            await tx.delete_cart(actor_key)
        logger.debug("Cleared cart for %s", actor_key)
