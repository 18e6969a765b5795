"""Storage backends for the shop service."""

from services.shop_service.storage.base import (
    HeaderRow,
    ItemRow,
    Storage,
    StorageTransaction,
)
from services.shop_service.storage.sql import SqlStorage

__all__ = ["HeaderRow", "ItemRow", "SqlStorage", "Storage", "StorageTransaction"]
