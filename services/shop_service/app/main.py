"""FastAPI application for the Shop Service."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from libs.common.logging import get_logger, get_request_id
from libs.common.middleware import add_observability_middleware
from services.shop_service.domain.errors import (
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from services.shop_service.routers import cart_router, orders_router

logger = get_logger(__name__)


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.message, "details": exc.details},
    )


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})


async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "detail": "Could not save your changes, please try again",
            "request_id": get_request_id(),
        },
    )


def create_app() -> FastAPI:
    """Create and configure the Shop Service FastAPI app."""
    app = FastAPI(
        title="Storefront Shop Service",
        version="0.1.0",
        description="Carts, checkout and order persistence for the storefront.",
    )
    add_observability_middleware(app)

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(PersistenceError, persistence_error_handler)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "shop"}

    app.include_router(cart_router, prefix="/shop")
    app.include_router(orders_router, prefix="/shop")

    return app


app = create_app()
