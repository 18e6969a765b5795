import contextlib
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from libs.auth.dependencies import get_current_user, get_optional_user
from libs.auth.models import AuthUser
from libs.common.config import Settings, get_settings
from libs.common.currency import Money
from libs.db.base import Base
from libs.db.session import get_session_factory
from services.shop_service import models as _shop_models  # noqa: F401
from services.shop_service.cart_store import CartStore
from services.shop_service.messages import Messages
from services.shop_service.methods import (
    FlatRate,
    FreeShipping,
    PaymentMethod,
    PaymentRegistry,
    ShippingRegistry,
    set_payment_registry,
    set_shipping_registry,
)
from services.shop_service.numbering import MaxScanAllocator
from services.shop_service.repository import OrderRepository
from services.shop_service.storage import SqlStorage

SESSION_ID = "test-session"


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh in-memory SQLite database per test.
    StaticPool keeps every session on the one connection that holds the data.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
def storage(session_factory) -> SqlStorage:
    return SqlStorage(session_factory)


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def shipping_registry() -> ShippingRegistry:
    return ShippingRegistry(
        [FlatRate(Money.of("5.00")), FreeShipping(Money.of("100.00"))]
    )


@pytest.fixture
def payment_registry() -> PaymentRegistry:
    return PaymentRegistry(
        [
            PaymentMethod("cheque", "Cheque"),
            PaymentMethod("paypal", "PayPal", enabled=False),
        ]
    )


@pytest.fixture
def messages() -> Messages:
    return Messages()


@pytest.fixture
def repository(storage, shipping_registry, payment_registry, settings) -> OrderRepository:
    return OrderRepository(
        storage,
        allocator=MaxScanAllocator(),
        shipping_registry=shipping_registry,
        payment_registry=payment_registry,
        settings=settings,
    )


@pytest.fixture
def cart_store(storage, shipping_registry, messages, settings) -> CartStore:
    return CartStore(
        storage,
        shipping_registry=shipping_registry,
        messages=messages,
        settings=settings,
    )


@pytest.fixture
def registries(shipping_registry, payment_registry):
    """Install the test registries process-wide for the HTTP layer."""
    set_shipping_registry(shipping_registry)
    set_payment_registry(payment_registry)
    yield
    set_shipping_registry(None)
    set_payment_registry(None)


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def make_user(user_id: str = "42", role: str = "authenticated", **claims) -> AuthUser:
    return AuthUser(sub=user_id, email=f"user{user_id}@example.com", role=role, **claims)


def make_admin_user() -> AuthUser:
    return make_user(user_id="admin", role="service_role")


@contextlib.contextmanager
def override_auth(app, user: Optional[AuthUser]):
    """Authenticate every request made inside the block as ``user``."""
    app.dependency_overrides[get_optional_user] = lambda: user
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_optional_user, None)
        app.dependency_overrides.pop(get_current_user, None)


@pytest_asyncio.fixture
async def shop_client(session_factory, registries) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient for the shop app, bound to the per-test database and
    identified as an anonymous session.
    """
    from services.shop_service.app.main import app

    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Session-ID": SESSION_ID},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
