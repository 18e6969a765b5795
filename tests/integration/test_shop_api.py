"""Integration tests for the shop HTTP endpoints."""

import pytest
from jose import jwt
from libs.common.config import get_settings
from services.shop_service.app.main import app
from tests.conftest import make_admin_user, make_user, override_auth


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _add_item(client, **overrides):
    payload = {
        "name": "Goggles",
        "price": "10.00",
        "quantity": 2,
        "product_id": 9,
        "tax": {"standard": "1.00"},
    }
    payload.update(overrides)
    response = await client.post("/shop/cart/items", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


async def _checkout(client, **payload):
    await _add_item(client)
    await client.post("/shop/cart/shipping", json={"method": "flat"})
    response = await client.post("/shop/cart/checkout", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_empty_cart(shop_client):
    response = await shop_client.get("/shop/cart")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["items"] == []
    assert data["html"]["total"] == "$0.00"
    assert set(data["shipping_methods"]) == {"flat"}
    assert data["payment_methods"] == ["cheque"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cart_requires_an_actor(shop_client):
    response = await shop_client.get("/shop/cart", headers={"X-Session-ID": ""})

    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.integration
async def test_add_item_returns_totals(shop_client):
    data = await _add_item(shop_client)

    assert data["success"] is True
    assert data["subtotal"] == "20.00"
    assert data["tax"] == {"standard": "1.00"}
    assert data["total"] == "21.00"
    assert data["html"] == {
        "subtotal": "$20.00",
        "tax": {"standard": "$1.00"},
        "total": "$21.00",
        "item_price": "$10.00",
        "item_subtotal": "$20.00",
    }
    assert data["items"][0]["key"] == "product-9"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_update_item_quantity(shop_client):
    await _add_item(shop_client)

    response = await shop_client.put("/shop/cart/items/product-9", json={"quantity": 3})

    data = response.json()
    assert data["success"] is True
    assert data["item_subtotal"] == "30.00"
    assert data["subtotal"] == "30.00"
    assert data["tax"] == {"standard": "1.50"}
    assert data["total"] == "31.50"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_update_unknown_item_reports_error(shop_client):
    await _add_item(shop_client)

    response = await shop_client.put("/shop/cart/items/product-1", json={"quantity": 3})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Item not found in cart"
    assert data["html"]["subtotal"] == "$20.00"
    assert "subtotal" not in data


@pytest.mark.asyncio
@pytest.mark.integration
async def test_zero_quantity_removes_item(shop_client):
    await _add_item(shop_client)

    await shop_client.put("/shop/cart/items/product-9", json={"quantity": 0})

    data = (await shop_client.get("/shop/cart")).json()
    assert data["items"] == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_select_shipping(shop_client):
    await _add_item(shop_client)

    response = await shop_client.post("/shop/cart/shipping", json={"method": "flat"})
    assert response.json()["total"] == "26.00"

    response = await shop_client.post("/shop/cart/shipping", json={"method": "teleport"})
    data = response.json()
    assert data["success"] is False
    assert "teleport" in data["error"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_bulk_update_is_all_or_nothing(shop_client):
    await _add_item(shop_client)

    response = await shop_client.post(
        "/shop/cart/update", json={"cart": {"product-9": 5, "product-404": 1}}
    )
    assert response.json()["success"] is False

    response = await shop_client.post("/shop/cart/update", json={"cart": {"product-9": 5}})
    data = response.json()
    assert data["success"] is True
    assert data["subtotal"] == "50.00"
    assert data["messages"] == [{"level": "notice", "text": "Successfully updated the cart."}]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_session_carts_are_separate(shop_client):
    await _add_item(shop_client)

    response = await shop_client.get("/shop/cart", headers={"X-Session-ID": "someone-else"})

    assert response.json()["items"] == []


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_creates_order_and_clears_cart(shop_client):
    data = await _checkout(shop_client, payment_method="cheque")

    assert data["success"] is True
    assert data["number"] == 1
    assert data["total"] == "26.00"
    assert data["key"].startswith("order_")

    cart = (await shop_client.get("/shop/cart")).json()
    assert cart["items"] == []

    order = (await shop_client.get(f"/shop/orders/key/{data['key']}")).json()
    assert order["id"] == data["order_id"]
    assert order["status"] == "pending"
    assert order["payment"] == "cheque"
    assert order["shipping"]["rate"] == "5.00"
    assert order["items"][0]["id"] is not None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_without_shipping_fails(shop_client):
    await _add_item(shop_client)

    response = await shop_client.post("/shop/cart/checkout", json={})

    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Please select a shipping method"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_empty_cart_fails(shop_client):
    response = await shop_client.post("/shop/cart/checkout", json={})

    assert response.json() == {
        "success": False,
        "error": "Cart is empty",
        "html": {"subtotal": "$0.00", "tax": {}, "total": "$0.00"},
        "messages": [],
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_signed_in_checkout_snapshots_customer(shop_client):
    with override_auth(app, make_user(user_id="42", name="Ada")):
        data = await _checkout(shop_client)
        order = (await shop_client.get(f"/shop/orders/number/{data['number']}")).json()

    assert order["customer"]["id"] == 42
    assert order["customer"]["name"] == "Ada"


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_order_lookups(shop_client):
    with override_auth(app, make_user(user_id="42")):
        data = await _checkout(shop_client)
        by_number = await shop_client.get(f"/shop/orders/number/{data['number']}")
        by_id = await shop_client.get(f"/shop/orders/{data['order_id']}")
        missing = await shop_client.get("/shop/orders/999")
    by_key = await shop_client.get(f"/shop/orders/key/{data['key']}")

    assert by_number.json()["id"] == data["order_id"]
    assert by_id.json()["number"] == data["number"]
    assert by_key.json()["title"] == f"Order #{data['number']}"
    assert missing.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_order_reads_are_limited_to_their_customer(shop_client):
    with override_auth(app, make_user(user_id="42")):
        data = await _checkout(shop_client)
    url = f"/shop/orders/{data['order_id']}"

    anonymous = await shop_client.get(url, headers={"X-Session-ID": "stranger"})
    with override_auth(app, make_user(user_id="7")):
        other = await shop_client.get(url)
        other_by_number = await shop_client.get(f"/shop/orders/number/{data['number']}")
    with override_auth(app, make_admin_user()):
        admin = await shop_client.get(url)

    assert anonymous.status_code in (401, 403)
    assert other.status_code == 404
    assert other_by_number.status_code == 404
    assert admin.status_code == 200
    assert admin.json()["customer"]["email"] == "user42@example.com"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_status_update_requires_admin(shop_client):
    data = await _checkout(shop_client)

    with override_auth(app, make_user()):
        response = await shop_client.patch(
            f"/shop/orders/{data['order_id']}/status", json={"status": "completed"}
        )

    assert response.status_code == 403


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_updates_status(shop_client):
    data = await _checkout(shop_client)

    with override_auth(app, make_admin_user()):
        response = await shop_client.patch(
            f"/shop/orders/{data['order_id']}/status", json={"status": "completed"}
        )
        invalid = await shop_client.patch(
            f"/shop/orders/{data['order_id']}/status", json={"status": "shipped"}
        )

    assert response.status_code == 200, response.text
    order = response.json()
    assert order["status"] == "completed"
    assert order["status_label"] == "Completed"
    assert order["completed_at"] is not None
    assert order["number"] == data["number"]
    assert invalid.status_code == 400


@pytest.mark.asyncio
@pytest.mark.integration
async def test_adding_same_product_twice_keeps_both_taxes(shop_client):
    await _add_item(shop_client, quantity=1, tax={"standard": "0.50"})
    cart = await _add_item(shop_client, quantity=1, tax={"standard": "0.50"})
    assert cart["tax"] == {"standard": "1.00"}

    await shop_client.post("/shop/cart/shipping", json={"method": "flat"})
    response = await shop_client.post("/shop/cart/checkout", json={})

    assert response.json()["total"] == "26.00"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invalid_bearer_token_is_rejected(shop_client):
    response = await shop_client.get(
        "/shop/cart", headers={"Authorization": "Bearer not-a-jwt"}
    )

    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_valid_bearer_token_uses_customer_cart(shop_client):
    token = jwt.encode(
        {"sub": "42", "email": "user42@example.com", "role": "authenticated"},
        get_settings().SUPABASE_JWT_SECRET,
        algorithm="HS256",
    )
    headers = {"Authorization": f"Bearer {token}"}

    await _add_item(shop_client, quantity=1)
    signed_in = await shop_client.get("/shop/cart", headers=headers)

    assert signed_in.status_code == 200
    assert signed_in.json()["items"] == []
