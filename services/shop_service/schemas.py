"""Pydantic schemas for shop service."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field
from services.shop_service.models import ItemType, OrderStatus

# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    product_id: Optional[int] = None
    tax: dict[str, Decimal] = {}
    meta: dict[str, str] = {}


class CartItemUpdate(BaseModel):
    # Zero or less removes the item
    quantity: int


class CartBulkUpdate(BaseModel):
    """Quantities keyed by cart item key."""

    cart: dict[str, int]


class ShippingSelect(BaseModel):
    method: str


class DestinationUpdate(BaseModel):
    country: Optional[str] = Field(None, max_length=2)
    state: Optional[str] = None
    postcode: Optional[str] = None


class CouponApply(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class CheckoutRequest(BaseModel):
    payment_method: Optional[str] = None
    customer_note: str = ""


class MessageResponse(BaseModel):
    level: str
    text: str


class CartItemResponse(BaseModel):
    key: str
    product_id: Optional[int]
    name: str
    price: Decimal
    quantity: int
    subtotal: Decimal
    tax: dict[str, Decimal]
    meta: dict[str, str]


class CartHtml(BaseModel):
    """Formatted values for direct display."""

    subtotal: str
    tax: dict[str, str]
    total: str
    item_price: Optional[str] = None
    item_subtotal: Optional[str] = None


class CartResponse(BaseModel):
    """Every cart endpoint answers with this shape.

    On failure ``success`` is false and ``error`` holds the reason; ``html``
    still reflects the unchanged cart.
    """

    success: bool
    error: Optional[str] = None
    subtotal: Optional[Decimal] = None
    tax: Optional[dict[str, Decimal]] = None
    total: Optional[Decimal] = None
    item_price: Optional[Decimal] = None
    item_subtotal: Optional[Decimal] = None
    items: Optional[list[CartItemResponse]] = None
    shipping_method: Optional[str] = None
    shipping_methods: Optional[list[str]] = None
    payment_methods: Optional[list[str]] = None
    html: CartHtml
    messages: list[MessageResponse] = []


class CheckoutResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    order_id: Optional[int] = None
    number: Optional[int] = None
    key: Optional[str] = None
    total: Optional[Decimal] = None
    html: Optional[CartHtml] = None
    messages: list[MessageResponse] = []


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class AddressResponse(BaseModel):
    type: str = "address"
    first_name: str = ""
    last_name: str = ""
    address: str = ""
    country: str = ""
    state: str = ""
    postcode: str = ""
    phone: str = ""
    email: str = ""
    company: Optional[str] = None
    vat_number: Optional[str] = None


class CustomerResponse(BaseModel):
    id: int
    login: str
    email: str
    name: str
    billing_address: AddressResponse
    shipping_address: AddressResponse


class ShippingResponse(BaseModel):
    method_id: str
    name: str
    rate: Decimal


class OrderItemResponse(BaseModel):
    id: Optional[int]
    product_id: Optional[int]
    type: ItemType
    name: str
    price: Decimal
    quantity: int
    subtotal: Decimal
    tax: dict[str, Decimal]
    meta: dict[str, str]


class OrderResponse(BaseModel):
    id: int
    number: Optional[int]
    key: str
    title: str
    status: OrderStatus
    status_label: str
    currency: str
    customer: CustomerResponse
    customer_note: str
    shipping: Optional[ShippingResponse]
    payment: Optional[str]
    coupons: list[str]
    items: list[OrderItemResponse]
    subtotal: Decimal
    discount: Decimal
    tax: dict[str, Decimal]
    total_tax: Decimal
    total: Decimal
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]


class OrderStatusUpdate(BaseModel):
    status: str
