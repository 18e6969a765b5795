"""Shop orders router: order lookups and status changes."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from libs.auth.dependencies import get_current_user, require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from services.shop_service.dependencies import get_order_repository
from services.shop_service.domain import Order, ValidationError
from services.shop_service.domain.customer import Address
from services.shop_service.repository import OrderRepository
from services.shop_service.schemas import (
    AddressResponse,
    CustomerResponse,
    OrderItemResponse,
    OrderResponse,
    OrderStatusUpdate,
    ShippingResponse,
)

logger = get_logger(__name__)

router = APIRouter(tags=["shop"])


def _address(address: Address) -> AddressResponse:
    return AddressResponse(**address.to_dict())


def order_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        number=order.number,
        key=order.key,
        title=order.title,
        status=order.status,
        status_label=order.status.label,
        currency=order.currency,
        customer=CustomerResponse(
            id=order.customer.id,
            login=order.customer.login,
            email=order.customer.email,
            name=order.customer.name,
            billing_address=_address(order.customer.billing_address),
            shipping_address=_address(order.customer.shipping_address),
        ),
        customer_note=order.customer_note,
        shipping=(
            ShippingResponse(
                method_id=order.shipping.method_id,
                name=order.shipping.name,
                rate=order.shipping.rate.decimal,
            )
            if order.shipping
            else None
        ),
        payment=order.payment,
        coupons=order.coupons,
        items=[
            OrderItemResponse(
                id=item.id,
                product_id=item.product_id,
                type=item.type,
                name=item.name,
                price=item.price.decimal,
                quantity=item.quantity,
                subtotal=item.subtotal.decimal,
                tax={k: v.decimal for k, v in item.tax.items()},
                meta=item.meta,
            )
            for item in order.items
        ],
        subtotal=order.subtotal.decimal,
        discount=order.discount.decimal,
        tax={k: v.decimal for k, v in order.tax.items()},
        total_tax=order.total_tax.decimal,
        total=order.total.decimal,
        created_at=order.created_at,
        updated_at=order.updated_at,
        completed_at=order.completed_at,
    )


def _or_404(order):
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


def _owned_or_404(order, user: AuthUser):
    """Admins see every order; customers only the ones they placed."""
    order = _or_404(order)
    if user.role != "service_role" and order.customer.login != user.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


@router.get("/orders/number/{number}", response_model=OrderResponse)
async def get_order_by_number(
    number: int,
    repository: Annotated[OrderRepository, Depends(get_order_repository)],
    current_user: Annotated[AuthUser, Depends(get_current_user)],
):
    return order_response(
        _owned_or_404(await repository.find_by_number(number), current_user)
    )


@router.get("/orders/key/{key}", response_model=OrderResponse)
async def get_order_by_key(
    key: str,
    repository: Annotated[OrderRepository, Depends(get_order_repository)],
):
    """Customer-facing lookup by the order key sent in confirmations."""
    return order_response(_or_404(await repository.find_by_key(key)))


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    repository: Annotated[OrderRepository, Depends(get_order_repository)],
    current_user: Annotated[AuthUser, Depends(get_current_user)],
):
    return order_response(_owned_or_404(await repository.find(order_id), current_user))


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    repository: Annotated[OrderRepository, Depends(get_order_repository)],
    admin: Annotated[AuthUser, Depends(require_admin)],
):
    order = _or_404(await repository.find(order_id))
    previous = order.status
    try:
        order.set_status(payload.status)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)

    await repository.save(order)
    logger.info(
        "Order %s status %s -> %s by %s",
        order.id,
        previous.value,
        order.status.value,
        admin.user_id,
    )
    return order_response(order)
