"""FastAPI dependencies wiring storage, repositories and the current actor."""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.common.config import Settings, get_settings
from libs.db.session import get_session_factory
from services.shop_service.cart_store import CartStore, customer_actor, session_actor
from services.shop_service.domain.customer import GUEST_ID, Customer
from services.shop_service.messages import Messages
from services.shop_service.methods import (
    get_payment_registry,
    get_shipping_registry,
    get_tax_calculator,
)
from services.shop_service.repository import OrderRepository
from services.shop_service.storage import SqlStorage
from services.shop_service.storage.base import Storage
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@dataclass
class Actor:
    """Who the cart belongs to: a signed-in customer or an anonymous session."""

    key: str
    customer: Optional[Customer] = None


def get_storage(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> Storage:
    return SqlStorage(session_factory)


def get_messages() -> Messages:
    return Messages()


def get_order_repository(
    storage: Annotated[Storage, Depends(get_storage)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> OrderRepository:
    return OrderRepository(
        storage,
        shipping_registry=get_shipping_registry(),
        payment_registry=get_payment_registry(),
        settings=settings,
    )


def get_cart_store(
    storage: Annotated[Storage, Depends(get_storage)],
    messages: Annotated[Messages, Depends(get_messages)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CartStore:
    return CartStore(
        storage,
        shipping_registry=get_shipping_registry(),
        tax_calculator=get_tax_calculator(),
        messages=messages,
        settings=settings,
    )


async def get_actor(
    user: Annotated[Optional[AuthUser], Depends(get_optional_user)],
    x_session_id: Annotated[Optional[str], Header()] = None,
) -> Actor:
    if user is not None:
        customer = Customer(
            id=user.customer_id or GUEST_ID,
            login=user.user_id,
            email=user.email or "",
            name=user.name or "",
        )
        return Actor(key=customer_actor(user.user_id), customer=customer)

    if x_session_id:
        return Actor(key=session_actor(x_session_id))

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Send a bearer token or an X-Session-ID header",
    )
