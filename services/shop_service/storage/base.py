"""Storage capability used by the order repository and cart store.

The domain layer never issues queries. It opens a transaction from a
``Storage`` and calls the explicit operations of the ``StorageTransaction``
it gets back. Everything done inside one ``transaction()`` block commits or
rolls back together.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncContextManager, Collection, Optional, Sequence

from services.shop_service.models.enums import ItemType, OrderStatus


@dataclass
class HeaderRow:
    id: int
    number: Optional[int]
    key: Optional[str]
    title: str
    status: OrderStatus
    customer_note: Optional[str]
    created_at: datetime


@dataclass
class ItemRow:
    """Persisted item values; money in minor units."""

    product_id: Optional[int]
    product_type: ItemType
    title: str
    price: int
    tax: int
    quantity: int
    cost: int
    id: Optional[int] = None
    meta: dict[str, Optional[str]] = field(default_factory=dict)

    def values(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_type": self.product_type,
            "title": self.title,
            "price": self.price,
            "tax": self.tax,
            "quantity": self.quantity,
            "cost": self.cost,
        }


class StorageTransaction(ABC):
    """One unit of work. Methods are only valid inside its transaction."""

    # -- order header -------------------------------------------------------
    @abstractmethod
    async def upsert_header(self, order_id: Optional[int], values: dict[str, Any]) -> int:
        """Insert a header when ``order_id`` is None, else update only ``values``.

        Returns the header identity.
        """

    @abstractmethod
    async def fetch_header(self, order_id: int) -> Optional[HeaderRow]:
        ...

    @abstractmethod
    async def next_identity(self) -> int:
        """``max(existing order ids and numbers) + 1`` (1 for an empty store)."""

    @abstractmethod
    async def increment_counter(self, name: str) -> Optional[int]:
        """Atomically increment a counter; None when the counter does not exist."""

    @abstractmethod
    async def create_counter(self, name: str, value: int) -> None:
        ...

    # -- order meta ---------------------------------------------------------
    @abstractmethod
    async def upsert_order_meta(self, order_id: int, key: str, value: Optional[str]) -> None:
        ...

    @abstractmethod
    async def fetch_order_meta(self, order_id: int) -> dict[str, Optional[str]]:
        ...

    # -- items --------------------------------------------------------------
    @abstractmethod
    async def delete_items_except(self, order_id: int, keep_ids: Collection[int]) -> int:
        """Delete the order's items not in ``keep_ids`` (all when empty).

        Returns the number of deleted items.
        """

    @abstractmethod
    async def upsert_item(self, order_id: int, item_id: Optional[int], row: ItemRow) -> int:
        """Insert when ``item_id`` is None, else update in place. Returns the id."""

    @abstractmethod
    async def upsert_item_meta(self, item_id: int, key: str, value: Optional[str]) -> None:
        """Replace-if-exists keyed by (item id, key)."""

    @abstractmethod
    async def delete_item_meta_except(self, item_id: int, keys: Collection[str]) -> None:
        ...

    @abstractmethod
    async def fetch_items(self, order_id: int) -> list[ItemRow]:
        """Items in insertion order, each with its meta rows."""

    # -- queries ------------------------------------------------------------
    @abstractmethod
    async def find_order_id(
        self, number: Optional[int] = None, key: Optional[str] = None
    ) -> Optional[int]:
        ...

    @abstractmethod
    async def find_order_ids(
        self,
        statuses: Optional[Sequence[OrderStatus]] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
    ) -> list[int]:
        """Matching ids, newest first."""

    # -- carts --------------------------------------------------------------
    @abstractmethod
    async def fetch_cart(self, actor_key: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    async def save_cart(self, actor_key: str, payload: dict[str, Any]) -> int:
        ...

    @abstractmethod
    async def delete_cart(self, actor_key: str) -> None:
        ...


class Storage(ABC):
    @abstractmethod
    def transaction(self) -> AsyncContextManager[StorageTransaction]:
        """Open a unit of work; commit on normal exit, roll back on error.

        Backend failures surface as ``PersistenceError`` (``ConflictError`` for
        uniqueness violations).
        """
