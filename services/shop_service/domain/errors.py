"""Error taxonomy for the shop domain."""

from typing import Optional


class ShopError(Exception):
    """Base exception for shop operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(ShopError):
    """Invalid input: bad quantity, unknown item or method, empty cart.

    The operation that raised it has not mutated anything.
    """


class NotFoundError(ShopError):
    """A referenced order, shipping method or payment method does not exist."""


class PersistenceError(ShopError):
    """Storage failure. The whole unit of work was rolled back."""


class ConflictError(PersistenceError):
    """A uniqueness constraint rejected the write (e.g. a taken order number)."""
