"""Shop cart router: cart mutations and checkout.

Every endpoint answers with JSON carrying ``success``. Invalid input and
unknown references come back as ``success: false`` with an ``error`` and the
unchanged cart totals; storage failures propagate.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from libs.common.config import Settings, get_settings
from libs.common.currency import Money, format_price
from libs.common.logging import get_logger
from services.shop_service.cart_store import CartStore
from services.shop_service.dependencies import (
    Actor,
    get_actor,
    get_cart_store,
    get_order_repository,
)
from services.shop_service.domain import Cart, LineItem, NotFoundError, ValidationError
from services.shop_service.messages import Messages
from services.shop_service.methods import get_payment_registry
from services.shop_service.repository import OrderRepository
from services.shop_service.schemas import (
    CartBulkUpdate,
    CartHtml,
    CartItemCreate,
    CartItemResponse,
    CartItemUpdate,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    CouponApply,
    DestinationUpdate,
    MessageResponse,
    ShippingSelect,
)

logger = get_logger(__name__)

router = APIRouter(tags=["shop"])

RecoverableErrors = (ValidationError, NotFoundError)


# ============================================================================
# RESPONSE HELPERS
# ============================================================================


def display_prices(item: LineItem, settings: Settings) -> tuple[Money, Money]:
    """Unit price and line subtotal as shown to the shopper."""
    if not settings.PRICES_INCLUDE_TAX:
        return item.price, item.subtotal
    subtotal = item.subtotal + item.total_tax
    return subtotal.scale(1, item.quantity), subtotal


def _messages(messages: Messages) -> list[MessageResponse]:
    return [MessageResponse(level=m.level, text=m.text) for m in messages.flush()]


def _html(cart: Cart, item_prices: Optional[tuple[Money, Money]] = None) -> CartHtml:
    html = CartHtml(
        subtotal=format_price(cart.subtotal),
        tax={tax_class: format_price(amount) for tax_class, amount in cart.tax.items()},
        total=format_price(cart.total),
    )
    if item_prices is not None:
        html.item_price = format_price(item_prices[0])
        html.item_subtotal = format_price(item_prices[1])
    return html


def cart_response(
    cart: Cart,
    store: CartStore,
    settings: Settings,
    item: Optional[LineItem] = None,
    detailed: bool = False,
) -> CartResponse:
    item_prices = display_prices(item, settings) if item is not None else None
    response = CartResponse(
        success=True,
        subtotal=cart.subtotal.decimal,
        tax={tax_class: amount.decimal for tax_class, amount in cart.tax.items()},
        total=cart.total.decimal,
        html=_html(cart, item_prices),
        messages=_messages(store.messages),
    )
    if item_prices is not None:
        response.item_price = item_prices[0].decimal
        response.item_subtotal = item_prices[1].decimal
    if detailed:
        response.items = [
            CartItemResponse(
                key=key,
                product_id=line.product_id,
                name=line.name,
                price=line.price.decimal,
                quantity=line.quantity,
                subtotal=line.subtotal.decimal,
                tax={k: v.decimal for k, v in line.tax.items()},
                meta=line.meta,
            )
            for key, line in cart.items.items()
        ]
        response.shipping_method = cart.shipping_method.id if cart.shipping_method else None
        response.shipping_methods = [
            method.id for method in store.shipping_registry.get_available(cart)
        ]
        response.payment_methods = [
            method.id for method in get_payment_registry().get_enabled()
        ]
    return response


def cart_error(cart: Cart, store: CartStore, error: str) -> CartResponse:
    return CartResponse(
        success=False,
        error=error,
        html=_html(cart),
        messages=_messages(store.messages),
    )


# ============================================================================
# CART ENDPOINTS
# ============================================================================


@router.get("/cart", response_model=CartResponse, response_model_exclude_none=True)
async def get_cart(
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    cart = await store.get(actor.key, actor.customer)
    return cart_response(cart, store, settings, detailed=True)


@router.post("/cart/items", response_model=CartResponse, response_model_exclude_none=True)
async def add_item(
    payload: CartItemCreate,
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    cart = await store.get(actor.key, actor.customer)
    try:
        item = LineItem(
            name=payload.name,
            price=Money.of(payload.price, cart.currency),
            quantity=payload.quantity,
            product_id=payload.product_id,
            tax={k: Money.of(v, cart.currency) for k, v in payload.tax.items()},
            meta=payload.meta,
        )
        key = cart.add_item(item)
    except RecoverableErrors as exc:
        return cart_error(cart, store, exc.message)

    await store.save(cart)
    return cart_response(cart, store, settings, item=cart.items[key], detailed=True)


@router.put(
    "/cart/items/{item_key}", response_model=CartResponse, response_model_exclude_none=True
)
async def update_item(
    item_key: str,
    payload: CartItemUpdate,
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    cart = await store.get(actor.key, actor.customer)
    try:
        cart.update_quantity(item_key, payload.quantity)
    except RecoverableErrors as exc:
        return cart_error(cart, store, exc.message)

    await store.save(cart)
    return cart_response(cart, store, settings, item=cart.items.get(item_key))


@router.delete(
    "/cart/items/{item_key}", response_model=CartResponse, response_model_exclude_none=True
)
async def remove_item(
    item_key: str,
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    cart = await store.get(actor.key, actor.customer)
    try:
        cart.remove_item(item_key)
    except RecoverableErrors as exc:
        return cart_error(cart, store, exc.message)

    await store.save(cart)
    store.messages.add_notice("Successfully removed item from cart.")
    return cart_response(cart, store, settings)


@router.post("/cart/update", response_model=CartResponse, response_model_exclude_none=True)
async def update_cart(
    payload: CartBulkUpdate,
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Apply several quantity changes at once; all or nothing."""
    cart = await store.get(actor.key, actor.customer)
    for key in payload.cart:
        if key not in cart.items:
            return cart_error(cart, store, f'Item "{key}" not found in cart')

    for key, quantity in payload.cart.items():
        cart.update_quantity(key, quantity)
    await store.save(cart)
    store.messages.add_notice("Successfully updated the cart.")
    return cart_response(cart, store, settings, detailed=True)


@router.post("/cart/shipping", response_model=CartResponse, response_model_exclude_none=True)
async def select_shipping(
    payload: ShippingSelect,
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    cart = await store.get(actor.key, actor.customer)
    try:
        method = store.shipping_registry.get(payload.method)
    except RecoverableErrors as exc:
        return cart_error(cart, store, exc.message)
    if not method.is_available(cart):
        return cart_error(cart, store, f'Shipping method "{method.name}" is not available')

    cart.set_shipping_method(method)
    await store.save(cart)
    return cart_response(cart, store, settings)


@router.post(
    "/cart/destination", response_model=CartResponse, response_model_exclude_none=True
)
async def change_destination(
    payload: DestinationUpdate,
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    cart = await store.get(actor.key, actor.customer)
    cart.change_destination(
        country=payload.country.upper() if payload.country else payload.country,
        state=payload.state,
        postcode=payload.postcode,
    )
    await store.save(cart)
    return cart_response(cart, store, settings)


@router.post("/cart/coupons", response_model=CartResponse, response_model_exclude_none=True)
async def apply_coupon(
    payload: CouponApply,
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    cart = await store.get(actor.key, actor.customer)
    try:
        cart.add_coupon(payload.code.strip().upper())
    except RecoverableErrors as exc:
        return cart_error(cart, store, exc.message)

    await store.save(cart)
    return cart_response(cart, store, settings)


@router.delete("/cart", response_model=CartResponse, response_model_exclude_none=True)
async def clear_cart(
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    await store.clear(actor.key)
    cart = await store.get(actor.key, actor.customer)
    return cart_response(cart, store, settings, detailed=True)


@router.post(
    "/cart/checkout", response_model=CheckoutResponse, response_model_exclude_none=True
)
async def checkout(
    payload: CheckoutRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_cart_store)],
    repository: Annotated[OrderRepository, Depends(get_order_repository)],
):
    """Turn the actor's cart into a saved order and empty the cart."""
    cart = await store.get(actor.key, actor.customer)
    try:
        order = repository.create_from_cart(
            cart,
            payment_method=payload.payment_method,
            customer_note=payload.customer_note,
            messages=store.messages,
        )
    except RecoverableErrors as exc:
        return CheckoutResponse(
            success=False,
            error=exc.message,
            html=_html(cart),
            messages=_messages(store.messages),
        )

    await repository.save(order)
    await store.clear(actor.key)
    logger.info("Checkout by %s created order %s", actor.key, order.number)
    store.messages.add_notice(f"Thank you, your order #{order.number} has been received.")

    return CheckoutResponse(
        success=True,
        order_id=order.id,
        number=order.number,
        key=order.key,
        total=order.total.decimal,
        messages=_messages(store.messages),
    )
