"""Unit tests for the Order aggregate: items, status and derived totals."""

import pytest
from libs.common.currency import Money
from services.shop_service.domain import ShippingSelection, ValidationError
from services.shop_service.models import OrderStatus
from tests.factories import make_customer, make_item, make_order


@pytest.mark.unit
def test_new_order_has_no_identity():
    order = make_order()

    assert order.is_new
    assert order.id is None
    assert order.number is None
    assert order.title == "Order"
    assert order.key.startswith("order_")


@pytest.mark.unit
def test_update_quantity_zero_removes_item():
    item = make_item()
    item.id = 11
    order = make_order(items=[item])

    order.update_quantity(11, 0)

    assert order.items == []


@pytest.mark.unit
def test_update_quantity_scales_item_tax():
    item = make_item(quantity=2, tax={"standard": "1.00"})
    item.id = 11
    order = make_order(items=[item])

    order.update_quantity(11, 4)

    assert order.subtotal == Money.of("40.00")
    assert order.tax == {"standard": Money.of("2.00")}


@pytest.mark.unit
def test_update_quantity_unknown_item_fails():
    item = make_item()
    item.id = 11
    order = make_order(items=[item])

    with pytest.raises(ValidationError):
        order.update_quantity(99, 2)
    assert item.quantity == 1


@pytest.mark.unit
def test_update_quantity_rejects_non_integers():
    item = make_item()
    item.id = 11
    order = make_order(items=[item])

    with pytest.raises(ValidationError):
        order.update_quantity(11, 1.5)


@pytest.mark.unit
def test_remove_unknown_item_fails():
    order = make_order()

    with pytest.raises(ValidationError):
        order.remove_item(5)


@pytest.mark.unit
def test_add_item_refuses_other_currency():
    order = make_order(items=[])

    with pytest.raises(ValidationError):
        order.add_item(make_item(currency="EUR"))


@pytest.mark.unit
def test_any_status_transition_is_allowed():
    order = make_order()

    order.set_status(OrderStatus.REFUNDED)
    order.set_status("pending")

    assert order.status is OrderStatus.PENDING


@pytest.mark.unit
def test_completing_stamps_completed_at():
    order = make_order()
    assert order.completed_at is None

    order.set_status("completed")

    assert order.completed_at is not None


@pytest.mark.unit
def test_unknown_status_fails():
    order = make_order()

    with pytest.raises(ValidationError):
        order.set_status("shipped")
    assert order.status is OrderStatus.PENDING


@pytest.mark.unit
def test_totals_follow_items_discount_and_shipping():
    order = make_order(
        items=[
            make_item(price="10.00", quantity=2, tax={"standard": "1.00"}),
            make_item(name="Towel", product_id=2, price="4.50", tax={"reduced": "0.20"}),
        ]
    )
    order.set_shipping(ShippingSelection("flat", Money.of("5.00")))
    order.set_discount(Money.of("2.00"))

    assert order.subtotal == Money.of("24.50")
    assert order.tax == {"standard": Money.of("1.00"), "reduced": Money.of("0.20")}
    assert order.total_tax == Money.of("1.20")
    assert order.total == Money.of("28.70")

    order.items[0].set_quantity(1)
    assert order.subtotal == Money.of("14.50")
    assert order.tax["standard"] == Money.of("0.50")


@pytest.mark.unit
def test_total_never_negative():
    order = make_order(items=[make_item(price="1.00")])
    order.set_discount(Money.of("5.00"))

    assert order.total == Money.zero()


@pytest.mark.unit
def test_negative_discount_rejected():
    order = make_order()

    with pytest.raises(ValidationError):
        order.set_discount(Money(-1))


@pytest.mark.unit
def test_customer_is_a_snapshot():
    customer = make_customer()
    order = make_order(customer=customer)

    customer.billing_address.address = "2 Other Rd"
    customer.name = "Renamed"

    assert order.customer.billing_address.address == "1 Main St"
    assert order.customer.name == "Jane Doe"


@pytest.mark.unit
def test_state_to_save_covers_every_persisted_field():
    order = make_order()
    order.number = 12

    state = order.get_state_to_save()

    assert state["title"] == "Order #12"
    assert state["status"] is OrderStatus.PENDING
    assert state["items"] is order.items
    assert {"customer", "shipping", "payment", "coupons", "discount", "total"} <= set(state)
