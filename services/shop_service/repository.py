"""Order repository: persists Order aggregates and rebuilds them from storage.

``save`` runs as one unit of work. Header, items, item meta and order meta
either all commit or none do, and a failed save leaves the in-memory order as
it was before the call so the caller can retry.
"""

import json
from calendar import monthrange
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from libs.common.config import Settings, get_settings
from libs.common.currency import Money
from libs.common.datetime_utils import parse_datetime, utc_now
from libs.common.logging import get_logger
from services.shop_service.domain.cart import Cart
from services.shop_service.domain.customer import Customer
from services.shop_service.domain.errors import ConflictError, NotFoundError, ValidationError
from services.shop_service.domain.items import TAX_META_PREFIX, LineItem
from services.shop_service.domain.order import Order, ShippingSelection
from services.shop_service.messages import Messages
from services.shop_service.methods import (
    PaymentRegistry,
    ShippingRegistry,
    get_payment_registry,
    get_shipping_registry,
)
from services.shop_service.models.enums import OrderStatus
from services.shop_service.numbering import OrderNumberAllocator, get_allocator
from services.shop_service.storage.base import ItemRow, Storage, StorageTransaction

logger = get_logger(__name__)

# Fields stored in header columns (or item rows); everything else in
# get_state_to_save() goes to the order meta side-store.
HEADER_FIELDS = frozenset(
    {"id", "number", "key", "title", "status", "customer_note", "created_at", "items"}
)

# Statuses that do not count towards monthly reports.
CLOSED_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REFUNDED)


def _encode(value: Any) -> Any:
    """json.dumps fallback for values found in an order's state."""
    if isinstance(value, Money):
        return value.amount
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    raise TypeError(f"Cannot store {type(value).__name__} in order meta")


def encode_meta(value: Any) -> str:
    return json.dumps(value, default=_encode, sort_keys=True)


def decode_meta(value: Optional[str]) -> Any:
    if value is None:
        return None
    return json.loads(value)


def item_to_row(item: LineItem) -> ItemRow:
    meta: dict[str, Optional[str]] = {
        f"{TAX_META_PREFIX}{tax_class}": str(amount.amount)
        for tax_class, amount in item.tax.items()
    }
    meta.update(item.meta)
    return ItemRow(
        id=item.id,
        product_id=item.product_id,
        product_type=item.type,
        title=item.name,
        price=item.price.amount,
        tax=item.total_tax.amount,
        quantity=item.quantity,
        cost=item.cost.amount,
        meta=meta,
    )


def item_from_row(row: ItemRow, currency: str) -> LineItem:
    tax: dict[str, Money] = {}
    meta: dict[str, str] = {}
    for key, value in row.meta.items():
        if key.startswith(TAX_META_PREFIX):
            tax[key[len(TAX_META_PREFIX):]] = Money(int(value or 0), currency)
        else:
            meta[key] = value or ""
    return LineItem(
        id=row.id,
        name=row.title,
        price=Money(row.price, currency),
        quantity=row.quantity,
        product_id=row.product_id,
        item_type=row.product_type,
        tax=tax,
        meta=meta,
    )


class _OrderSnapshot:
    """Identity fields touched by a save, restored when the save fails."""

    def __init__(self, order: Order):
        self.id = order.id
        self.number = order.number
        self.updated_at = order.updated_at
        self.item_ids = [(item, item.id) for item in order.items]

    def restore(self, order: Order) -> None:
        order.id = self.id
        order.number = self.number
        order.updated_at = self.updated_at
        for item, item_id in self.item_ids:
            item.id = item_id


class OrderRepository:
    def __init__(
        self,
        storage: Storage,
        allocator: Optional[OrderNumberAllocator] = None,
        shipping_registry: Optional[ShippingRegistry] = None,
        payment_registry: Optional[PaymentRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.allocator = allocator or get_allocator(self.settings)
        self.shipping_registry = shipping_registry or get_shipping_registry()
        self.payment_registry = payment_registry or get_payment_registry()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def save(self, order: Order) -> Order:
        """Persist ``order``; assigns ``id``, ``number`` and item ids as needed.

        Raises ``PersistenceError`` when storage fails. A conflict on a
        freshly allocated number is retried up to ``ORDER_NUMBER_MAX_RETRIES``
        times.
        """
        attempts = max(1, self.settings.ORDER_NUMBER_MAX_RETRIES)
        attempt = 0
        while True:
            attempt += 1
            snapshot = _OrderSnapshot(order)
            allocating = order.number is None
            try:
                async with self.storage.transaction() as tx:
                    await self._write(tx, order)
            except ConflictError as exc:
                snapshot.restore(order)
                if allocating and attempt < attempts:
                    logger.warning(
                        "Order number conflict for %s (attempt %d/%d), retrying",
                        order.key,
                        attempt,
                        attempts,
                    )
                    continue
                logger.error("Saving order %s failed: %s", order.key, exc.message)
                raise
            except Exception:
                snapshot.restore(order)
                raise

            logger.info("Saved order %s as #%s", order.id, order.number)
            return order

    async def _write(self, tx: StorageTransaction, order: Order) -> None:
        order.updated_at = utc_now()
        if order.number is None:
            order.number = await self.allocator.next_number(tx)

        state = order.get_state_to_save()
        header = {
            "number": state["number"],
            "title": state["title"],
            "status": state["status"],
            "customer_note": state["customer_note"] or "",
        }

        if order.id is None:
            header.update(key=state["key"], created_at=state["created_at"])
            order.id = await tx.upsert_header(None, header)
        else:
            persisted = await tx.fetch_header(order.id)
            if persisted is None:
                raise NotFoundError(f"Order {order.id} does not exist", {"order_id": order.id})
            current = {
                "number": persisted.number,
                "title": persisted.title,
                "status": persisted.status,
                "customer_note": persisted.customer_note or "",
            }
            changed = {k: v for k, v in header.items() if current[k] != v}
            if changed:
                await tx.upsert_header(order.id, changed)

        await self._write_items(tx, order.id, state["items"])

        for key, value in state.items():
            if key in HEADER_FIELDS:
                continue
            await tx.upsert_order_meta(order.id, key, encode_meta(value))

    async def _write_items(
        self, tx: StorageTransaction, order_id: int, items: list[LineItem]
    ) -> None:
        removed = await tx.delete_items_except(
            order_id, [item.id for item in items if item.id is not None]
        )
        if removed:
            logger.debug("Removed %d items from order %s", removed, order_id)

        for item in items:
            row = item_to_row(item)
            item.id = await tx.upsert_item(order_id, item.id, row)
            for key, value in row.meta.items():
                await tx.upsert_item_meta(item.id, key, value)
            await tx.delete_item_meta_except(item.id, row.meta.keys())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def _load(self, tx: StorageTransaction, order_id: int) -> Optional[Order]:
        header = await tx.fetch_header(order_id)
        if header is None:
            return None

        meta = {k: decode_meta(v) for k, v in (await tx.fetch_order_meta(order_id)).items()}
        currency = meta.get("currency") or self.settings.CURRENCY
        order = Order(
            currency=currency,
            status=header.status,
            customer=Customer.from_dict(meta.get("customer")),
            id=header.id,
            number=header.number,
            key=header.key,
            created_at=header.created_at,
            updated_at=parse_datetime(meta.get("updated_at")),
        )
        order.customer_note = header.customer_note or ""
        order.completed_at = parse_datetime(meta.get("completed_at"))
        order.shipping = ShippingSelection.from_dict(meta.get("shipping"))
        order.payment = meta.get("payment")
        order.coupons = list(meta.get("coupons") or [])
        order.discount = Money(int(meta.get("discount") or 0), currency)
        order.items = [item_from_row(row, currency) for row in await tx.fetch_items(order_id)]
        return order

    async def _load_many(self, tx: StorageTransaction, order_ids: list[int]) -> list[Order]:
        orders = []
        for order_id in order_ids:
            order = await self._load(tx, order_id)
            if order is not None:
                orders.append(order)
        return orders

    async def find(self, order_id: int) -> Optional[Order]:
        async with self.storage.transaction() as tx:
            return await self._load(tx, order_id)

    async def find_by_number(self, number: int) -> Optional[Order]:
        async with self.storage.transaction() as tx:
            order_id = await tx.find_order_id(number=number)
            return await self._load(tx, order_id) if order_id is not None else None

    async def find_by_key(self, key: str) -> Optional[Order]:
        async with self.storage.transaction() as tx:
            order_id = await tx.find_order_id(key=key)
            return await self._load(tx, order_id) if order_id is not None else None

    async def find_by_status(
        self, status: OrderStatus, older_than: Optional[datetime] = None
    ) -> list[Order]:
        """Orders in ``status``, newest first; optionally only those created before ``older_than``."""
        async with self.storage.transaction() as tx:
            order_ids = await tx.find_order_ids(
                statuses=[OrderStatus.parse(status)], created_before=older_than
            )
            return await self._load_many(tx, order_ids)

    def _stale_cutoff(self) -> datetime:
        return utc_now() - timedelta(days=self.settings.STALE_ORDER_DAYS)

    async def find_old_pending(self) -> list[Order]:
        return await self.find_by_status(OrderStatus.PENDING, older_than=self._stale_cutoff())

    async def find_old_processing(self) -> list[Order]:
        return await self.find_by_status(OrderStatus.PROCESSING, older_than=self._stale_cutoff())

    async def find_from_month(self, month: int, year: Optional[int] = None) -> list[Order]:
        """Orders placed in a calendar month (UTC), excluding cancelled and refunded."""
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12", {"month": month})
        year = year or utc_now().year
        start = datetime(year, month, 1, tzinfo=timezone.utc)
        end = start + timedelta(days=monthrange(year, month)[1])
        statuses = [s for s in OrderStatus if s not in CLOSED_STATUSES]

        async with self.storage.transaction() as tx:
            order_ids = await tx.find_order_ids(
                statuses=statuses, created_after=start, created_before=end
            )
            return await self._load_many(tx, order_ids)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def create_from_cart(
        self,
        cart: Cart,
        payment_method: Optional[str] = None,
        customer_note: str = "",
        messages: Optional[Messages] = None,
    ) -> Order:
        """Build a new, unsaved order from the cart.

        Everything is copied by value: later changes to the cart never reach
        the order and vice versa. A shipping method that is no longer
        registered fails the checkout only when shipping is required;
        otherwise the order goes without it and a warning is recorded.
        """
        if cart.is_empty:
            raise ValidationError("Cart is empty")

        method = cart.shipping_method
        if method is not None:
            try:
                self.shipping_registry.get(method.id)
            except NotFoundError as exc:
                if self.settings.SHIPPING_REQUIRED:
                    raise ValidationError(exc.message, exc.details) from exc
                warning = f'Shipping method "{method.id}" is no longer available'
                if messages is not None:
                    messages.add_warning(f"{warning}, the order was placed without shipping.")
                else:
                    logger.warning("%s, dropped at checkout", warning)
                method = None
        elif self.settings.SHIPPING_REQUIRED:
            raise ValidationError("Please select a shipping method")

        order = Order(currency=cart.currency, customer=cart.customer)
        for item in cart.items.values():
            order.add_item(item.copy())

        if method is not None:
            order.set_shipping(
                ShippingSelection(
                    method_id=method.id,
                    rate=method.calculate(cart),
                    name=method.name,
                    state=method.get_state(),
                )
            )

        if payment_method:
            try:
                order.set_payment(self.payment_registry.get(payment_method).id)
            except NotFoundError as exc:
                raise ValidationError(exc.message, exc.details) from exc

        for code in cart.coupons:
            order.add_coupon(code)
        order.set_discount(cart.discount)
        order.customer_note = customer_note or ""
        return order
