"""Integration tests for per-actor cart persistence."""

import pytest
from libs.common.currency import Money
from services.shop_service.cart_store import CartStore, customer_actor, session_actor
from services.shop_service.methods import ShippingRegistry
from tests.factories import make_customer, make_item


@pytest.mark.asyncio
@pytest.mark.integration
async def test_first_access_creates_empty_cart(cart_store):
    cart = await cart_store.get(session_actor("abc"))

    assert cart.is_empty
    assert cart.id is not None
    assert cart.currency == "USD"
    assert cart.customer.is_guest


@pytest.mark.asyncio
@pytest.mark.integration
async def test_saved_cart_is_loaded_back(cart_store, shipping_registry):
    actor = customer_actor(7)
    cart = await cart_store.get(actor, make_customer())
    key = cart.add_item(make_item(price="10.00", quantity=2, tax={"standard": "1.00"}))
    cart.set_shipping_method(shipping_registry.get("flat"))
    cart.add_coupon("SPRING")
    await cart_store.save(cart)

    loaded = await cart_store.get(actor)

    assert loaded.id == cart.id
    assert loaded.items[key].quantity == 2
    assert loaded.shipping_method is shipping_registry.get("flat")
    assert loaded.coupons == ["SPRING"]
    assert loaded.customer.name == "Jane Doe"
    assert loaded.total == Money.of("26.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_actors_do_not_share_carts(cart_store):
    mine = await cart_store.get(session_actor("mine"))
    mine.add_item(make_item())
    await cart_store.save(mine)

    theirs = await cart_store.get(session_actor("theirs"))

    assert theirs.is_empty
    assert theirs.id != mine.id


@pytest.mark.asyncio
@pytest.mark.integration
async def test_last_write_wins(cart_store):
    actor = session_actor("tabs")
    tab_one = await cart_store.get(actor)
    tab_two = await cart_store.get(actor)

    tab_one.add_item(make_item(name="Cap"))
    await cart_store.save(tab_one)
    tab_two.add_item(make_item(name="Fins", product_id=3))
    await cart_store.save(tab_two)

    loaded = await cart_store.get(actor)
    assert [item.name for item in loaded.items.values()] == ["Fins"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_vanished_shipping_method_is_dropped_with_warning(
    storage, cart_store, settings, messages
):
    actor = session_actor("abc")
    cart = await cart_store.get(actor)
    cart.add_item(make_item())
    cart.set_shipping_method(cart_store.shipping_registry.get("flat"))
    await cart_store.save(cart)

    other_store = CartStore(
        storage, shipping_registry=ShippingRegistry(), messages=messages, settings=settings
    )
    loaded = await other_store.get(actor)

    assert loaded.shipping_method is None
    assert len(messages.warnings) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_clear_discards_cart(cart_store):
    actor = session_actor("abc")
    cart = await cart_store.get(actor)
    cart.add_item(make_item())
    await cart_store.save(cart)

    await cart_store.clear(actor)

    assert (await cart_store.get(actor)).is_empty
