"""Order number allocation.

Numbers are handed out inside the saving transaction. Two strategies:

- ``MaxScanAllocator``: ``max(existing ids and numbers) + 1``. Only safe with a
  single writer; concurrent first-saves can compute the same value. The
  unique index on ``shop_orders.number`` rejects the loser and the repository
  retries with a fresh number.
- ``CounterAllocator``: atomic increment of a row in ``shop_counters``, seeded
  from the max-scan the first time it is used.
"""

from abc import ABC, abstractmethod
from typing import Optional

from libs.common.config import Settings, get_settings
from libs.common.logging import get_logger
from services.shop_service.storage.base import StorageTransaction

logger = get_logger(__name__)

ORDER_NUMBER_COUNTER = "order_number"


class OrderNumberAllocator(ABC):
    @abstractmethod
    async def next_number(self, tx: StorageTransaction) -> int:
        """Return a number strictly greater than every number handed out so far."""


class MaxScanAllocator(OrderNumberAllocator):
    async def next_number(self, tx: StorageTransaction) -> int:
        return await tx.next_identity()


class CounterAllocator(OrderNumberAllocator):
    def __init__(self, name: str = ORDER_NUMBER_COUNTER):
        self.name = name

    async def next_number(self, tx: StorageTransaction) -> int:
        value = await tx.increment_counter(self.name)
        if value is not None:
            return value

        value = await tx.next_identity()
        logger.info("Seeding counter %s at %d", self.name, value)
        await tx.create_counter(self.name, value)
        return value


def get_allocator(settings: Optional[Settings] = None) -> OrderNumberAllocator:
    settings = settings or get_settings()
    if settings.ORDER_NUMBER_STRATEGY == "counter":
        return CounterAllocator()
    return MaxScanAllocator()
