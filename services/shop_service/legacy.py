"""Ingestion of orders exported from the legacy storefront.

Legacy rows carry loosely typed data: status terms, a serialised
``order_data`` blob with flat ``billing_*`` / ``shipping_*`` keys, the linked
``customer_user`` and the legacy item list. Everything is validated here and
turned into an ``Order`` which is then saved through the regular repository.

Expected row shape::

    {
        "id": 42,
        "status": ["completed"],
        "order_key": "order_5301...",
        "date": "2014-02-16 10:30:00",
        "completed_date": "2014-02-17 08:00:00",
        "customer_note": "",
        "order_data": {...},
        "customer_user": {"id": 3, "login": "...", "email": "...", "display_name": "..."},
        "order_items": [{"id": 7, "name": "...", "qty": 2, "cost": "10.00", ...}],
    }
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from libs.common.config import Settings, get_settings
from libs.common.currency import Money, to_minor
from libs.common.datetime_utils import parse_datetime
from libs.common.logging import get_logger
from services.shop_service.domain.customer import Address, CompanyAddress, Customer
from services.shop_service.domain.errors import NotFoundError, ValidationError
from services.shop_service.domain.items import LineItem
from services.shop_service.domain.order import Order, ShippingSelection
from services.shop_service.messages import Messages
from services.shop_service.methods import (
    PaymentRegistry,
    ShippingRegistry,
    get_payment_registry,
    get_shipping_registry,
)
from services.shop_service.models.enums import OrderStatus
from services.shop_service.repository import OrderRepository

logger = get_logger(__name__)

LEGACY_STATUSES = {
    "pending": OrderStatus.PENDING,
    "processing": OrderStatus.PROCESSING,
    "completed": OrderStatus.COMPLETED,
    "cancelled": OrderStatus.CANCELLED,
    "refunded": OrderStatus.REFUNDED,
}

# Legacy items carry a single tax rate; it lands in this class.
LEGACY_TAX_CLASS = "standard"


def transform_status(value: Union[str, Sequence[str], None]) -> OrderStatus:
    """Map a legacy status term (or list of terms, first wins) to OrderStatus.

    Unknown terms, including "on-hold", become ON_HOLD.
    """
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if isinstance(value, str):
        value = value.strip().lower()
    return LEGACY_STATUSES.get(value, OrderStatus.ON_HOLD)


def _text(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value).strip()


def _address(data: Mapping[str, Any], prefix: str, with_contact: bool) -> Address:
    company = _text(data, f"{prefix}_company")
    if company:
        address: Address = CompanyAddress(company=company)
        if prefix == "billing":
            address.vat_number = _text(data, "billing_euvatno")
    else:
        address = Address()

    address.first_name = _text(data, f"{prefix}_first_name")
    address.last_name = _text(data, f"{prefix}_last_name")
    address.address = " ".join(
        [_text(data, f"{prefix}_address_1"), _text(data, f"{prefix}_address_2")]
    ).strip()
    address.country = _text(data, f"{prefix}_country")
    address.state = _text(data, f"{prefix}_state")
    address.postcode = _text(data, f"{prefix}_postcode")
    if with_contact:
        address.phone = _text(data, f"{prefix}_phone")
        address.email = _text(data, f"{prefix}_email")
    return address


def customer_from_legacy(
    data: Mapping[str, Any], user: Optional[Mapping[str, Any]] = None
) -> Customer:
    """Build a customer snapshot from flat legacy order data.

    ``user`` is the linked account, if the order had one; without it the
    customer is a guest.
    """
    customer = Customer(
        billing_address=_address(data, "billing", with_contact=True),
        shipping_address=_address(data, "shipping", with_contact=False),
    )
    if user:
        customer.id = int(user["id"])
        customer.login = _text(user, "login")
        customer.email = _text(user, "email")
        customer.name = _text(user, "display_name")
    else:
        customer.name = customer.billing_address.name or "Guest"
        customer.email = customer.billing_address.email
    return customer


def _money(value: Any, currency: str, field: str) -> Money:
    if value in (None, ""):
        return Money.zero(currency)
    try:
        return Money.of(value, currency)
    except ValueError as exc:
        raise ValidationError(f"Invalid amount for {field}", {field: value}) from exc


def _coupons(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [code.strip() for code in value.split(",") if code.strip()]
    if isinstance(value, Mapping):
        value = value.values()
    return [str(code).strip() for code in value if str(code).strip()]


class LegacyOrderImporter:
    def __init__(
        self,
        repository: OrderRepository,
        shipping_registry: Optional[ShippingRegistry] = None,
        payment_registry: Optional[PaymentRegistry] = None,
        messages: Optional[Messages] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.shipping_registry = shipping_registry or get_shipping_registry()
        self.payment_registry = payment_registry or get_payment_registry()
        self.messages = messages if messages is not None else Messages()
        self.settings = settings or get_settings()

    def build_item(self, data: Mapping[str, Any], currency: str) -> LineItem:
        try:
            quantity = int(data.get("qty") or 0)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid item quantity", {"qty": data.get("qty")}) from exc

        item = LineItem(
            name=_text(data, "name"),
            price=_money(data.get("cost"), currency, "cost"),
            quantity=quantity,
            product_id=int(data["id"]) if data.get("id") else None,
        )

        rate = data.get("taxrate")
        if rate not in (None, "", 0, "0"):
            try:
                tax = item.subtotal.decimal * Decimal(str(rate)) / 100
            except InvalidOperation as exc:
                raise ValidationError("Invalid tax rate", {"taxrate": rate}) from exc
            item.set_tax(LEGACY_TAX_CLASS, Money(to_minor(tax), currency))

        if data.get("variation_id"):
            item.set_meta("variation_id", data["variation_id"])
        for key, value in (data.get("variation") or {}).items():
            item.set_meta(str(key), value)
        return item

    def build(self, row: Mapping[str, Any]) -> Order:
        """Turn one legacy row into an unsaved Order numbered with the legacy id."""
        legacy_id = row.get("id")
        if not legacy_id:
            raise ValidationError("Legacy order has no id")
        legacy_id = int(legacy_id)

        data = row.get("order_data") or {}
        currency = _text(data, "currency") or self.settings.CURRENCY

        order = Order(
            currency=currency,
            status=transform_status(row.get("status")),
            customer=customer_from_legacy(data, row.get("customer_user")),
            number=legacy_id,
            key=_text(row, "order_key") or None,
            created_at=parse_datetime(row.get("date")),
        )
        order.customer_note = _text(row, "customer_note")
        order.completed_at = parse_datetime(row.get("completed_date"))

        for item in row.get("order_items") or []:
            order.add_item(self.build_item(item, currency))

        method_id = _text(data, "shipping_method")
        if method_id:
            try:
                method = self.shipping_registry.get(method_id)
            except NotFoundError:
                self.messages.add_warning(
                    f'Shipping method "{method_id}" not found. '
                    f'Order with ID "{legacy_id}" has no shipping method now.'
                )
            else:
                order.set_shipping(
                    ShippingSelection(
                        method_id=method.id,
                        rate=_money(data.get("order_shipping"), currency, "order_shipping"),
                        name=method.name,
                        state=method.get_state(),
                    )
                )

        payment_id = _text(data, "payment_method")
        if payment_id:
            try:
                order.set_payment(self.payment_registry.get(payment_id).id)
            except NotFoundError:
                self.messages.add_warning(
                    f'Payment method "{payment_id}" not found. '
                    f'Order with ID "{legacy_id}" has no payment method now.'
                )

        for code in _coupons(data.get("order_discount_coupons")):
            order.add_coupon(code)
        order.set_discount(_money(data.get("order_discount"), currency, "order_discount"))

        legacy_total = data.get("order_total")
        if legacy_total not in (None, ""):
            expected = _money(legacy_total, currency, "order_total")
            if expected != order.total:
                logger.warning(
                    "Legacy order %d total %s differs from recomputed %s",
                    legacy_id,
                    expected,
                    order.total,
                )
        return order

    async def import_rows(self, rows: Iterable[Mapping[str, Any]]) -> list[Order]:
        """Build and save every row. Invalid rows are reported and skipped.

        Storage failures are not caught: a ``PersistenceError`` stops the run.
        """
        imported = []
        for row in rows:
            try:
                order = self.build(row)
            except ValidationError as exc:
                self.messages.add_error(
                    f'Legacy order "{row.get("id")}" was not imported: {exc.message}'
                )
                continue
            imported.append(await self.repository.save(order))

        logger.info("Imported %d legacy orders", len(imported))
        return imported
