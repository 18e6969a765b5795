"""Shop service routers package."""

from services.shop_service.routers.cart import router as cart_router
from services.shop_service.routers.orders import router as orders_router

__all__ = ["cart_router", "orders_router"]
