"""SQLAlchemy implementation of the storage capability.

Statements are issued against the tables behind the declarative models, so
identities come back through ``inserted_primary_key`` on every dialect.
Upserts use ``ON CONFLICT DO UPDATE`` on PostgreSQL and SQLite and fall back
to delete-then-insert elsewhere; both run inside the caller's transaction.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Collection, Iterable, Optional, Sequence

from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from services.shop_service.domain.errors import ConflictError, PersistenceError
from services.shop_service.models import (
    CartRecord,
    CounterRecord,
    ItemType,
    OrderItemMetaRecord,
    OrderItemRecord,
    OrderMetaRecord,
    OrderRecord,
    OrderStatus,
)
from services.shop_service.storage.base import (
    HeaderRow,
    ItemRow,
    Storage,
    StorageTransaction,
)
from sqlalchemy import Table, delete, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

orders: Table = OrderRecord.__table__
order_meta: Table = OrderMetaRecord.__table__
order_items: Table = OrderItemRecord.__table__
order_item_meta: Table = OrderItemMetaRecord.__table__
counters: Table = CounterRecord.__table__
carts: Table = CartRecord.__table__

_UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class SqlTransaction(StorageTransaction):
    def __init__(self, session: AsyncSession):
        self._session = session
        self._dialect = session.get_bind().dialect.name

    async def _upsert(
        self, table: Table, values: dict[str, Any], index_elements: Iterable[str]
    ) -> None:
        index_elements = list(index_elements)
        dialect_insert = _UPSERT_INSERTS.get(self._dialect)
        if dialect_insert is None:
            # REPLACE semantics for backends without ON CONFLICT
            match = [table.c[name] == values[name] for name in index_elements]
            await self._session.execute(delete(table).where(*match))
            await self._session.execute(insert(table).values(**values))
            return

        stmt = dialect_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={
                name: stmt.excluded[name]
                for name in values
                if name not in index_elements
            },
        )
        await self._session.execute(stmt)

    # ------------------------------------------------------------------
    # Order header
    # ------------------------------------------------------------------
    async def upsert_header(self, order_id: Optional[int], values: dict[str, Any]) -> int:
        if order_id is None:
            result = await self._session.execute(insert(orders).values(**values))
            return int(result.inserted_primary_key[0])

        if values:
            await self._session.execute(
                update(orders).where(orders.c.id == order_id).values(**values)
            )
        return order_id

    async def fetch_header(self, order_id: int) -> Optional[HeaderRow]:
        result = await self._session.execute(select(orders).where(orders.c.id == order_id))
        row = result.mappings().first()
        if row is None:
            return None
        return HeaderRow(
            id=row["id"],
            number=row["number"],
            key=row["key"],
            title=row["title"],
            status=OrderStatus.parse(row["status"]),
            customer_note=row["customer_note"],
            created_at=ensure_utc(row["created_at"]),
        )

    async def next_identity(self) -> int:
        result = await self._session.execute(
            select(func.max(orders.c.id), func.max(orders.c.number))
        )
        max_id, max_number = result.one()
        return max(max_id or 0, max_number or 0) + 1

    async def increment_counter(self, name: str) -> Optional[int]:
        result = await self._session.execute(
            update(counters)
            .where(counters.c.name == name)
            .values(value=counters.c.value + 1)
        )
        if result.rowcount == 0:
            return None
        value = await self._session.execute(
            select(counters.c.value).where(counters.c.name == name)
        )
        return int(value.scalar_one())

    async def create_counter(self, name: str, value: int) -> None:
        await self._session.execute(insert(counters).values(name=name, value=value))

    # ------------------------------------------------------------------
    # Order meta
    # ------------------------------------------------------------------
    async def upsert_order_meta(self, order_id: int, key: str, value: Optional[str]) -> None:
        await self._upsert(
            order_meta,
            {"order_id": order_id, "meta_key": key, "meta_value": value},
            ("order_id", "meta_key"),
        )

    async def fetch_order_meta(self, order_id: int) -> dict[str, Optional[str]]:
        result = await self._session.execute(
            select(order_meta.c.meta_key, order_meta.c.meta_value).where(
                order_meta.c.order_id == order_id
            )
        )
        return {key: value for key, value in result.all()}

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------
    async def delete_items_except(self, order_id: int, keep_ids: Collection[int]) -> int:
        query = select(order_items.c.id).where(order_items.c.order_id == order_id)
        keep = [int(item_id) for item_id in keep_ids if item_id is not None]
        if keep:
            query = query.where(order_items.c.id.not_in(keep))
        doomed = list((await self._session.execute(query)).scalars())
        if not doomed:
            return 0

        # Meta first: SQLite does not enforce ON DELETE CASCADE by default
        await self._session.execute(
            delete(order_item_meta).where(order_item_meta.c.item_id.in_(doomed))
        )
        await self._session.execute(delete(order_items).where(order_items.c.id.in_(doomed)))
        return len(doomed)

    async def upsert_item(self, order_id: int, item_id: Optional[int], row: ItemRow) -> int:
        values = row.values()
        if item_id is None:
            result = await self._session.execute(
                insert(order_items).values(order_id=order_id, **values)
            )
            return int(result.inserted_primary_key[0])

        result = await self._session.execute(
            update(order_items)
            .where(order_items.c.id == item_id, order_items.c.order_id == order_id)
            .values(**values)
        )
        if result.rowcount == 0:
            raise PersistenceError(
                f"Item {item_id} does not belong to order {order_id}",
                {"item_id": item_id, "order_id": order_id},
            )
        return item_id

    async def upsert_item_meta(self, item_id: int, key: str, value: Optional[str]) -> None:
        await self._upsert(
            order_item_meta,
            {"item_id": item_id, "meta_key": key, "meta_value": value},
            ("item_id", "meta_key"),
        )

    async def delete_item_meta_except(self, item_id: int, keys: Collection[str]) -> None:
        stmt = delete(order_item_meta).where(order_item_meta.c.item_id == item_id)
        if keys:
            stmt = stmt.where(order_item_meta.c.meta_key.not_in(list(keys)))
        await self._session.execute(stmt)

    async def fetch_items(self, order_id: int) -> list[ItemRow]:
        result = await self._session.execute(
            select(order_items)
            .where(order_items.c.order_id == order_id)
            .order_by(order_items.c.id)
        )
        items = [
            ItemRow(
                id=row["id"],
                product_id=row["product_id"],
                product_type=ItemType(row["product_type"]),
                title=row["title"],
                price=row["price"],
                tax=row["tax"],
                quantity=row["quantity"],
                cost=row["cost"],
            )
            for row in result.mappings()
        ]
        if not items:
            return items

        by_id = {item.id: item for item in items}
        meta = await self._session.execute(
            select(
                order_item_meta.c.item_id,
                order_item_meta.c.meta_key,
                order_item_meta.c.meta_value,
            ).where(order_item_meta.c.item_id.in_(list(by_id)))
        )
        for item_id, key, value in meta.all():
            by_id[item_id].meta[key] = value
        return items

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def find_order_id(
        self, number: Optional[int] = None, key: Optional[str] = None
    ) -> Optional[int]:
        if number is None and key is None:
            return None
        query = select(orders.c.id)
        if number is not None:
            query = query.where(orders.c.number == number)
        if key is not None:
            query = query.where(orders.c["key"] == key)
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def find_order_ids(
        self,
        statuses: Optional[Sequence[OrderStatus]] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
    ) -> list[int]:
        query = select(orders.c.id)
        if statuses is not None:
            query = query.where(orders.c.status.in_(list(statuses)))
        if created_after is not None:
            query = query.where(orders.c.created_at >= created_after)
        if created_before is not None:
            query = query.where(orders.c.created_at < created_before)
        query = query.order_by(orders.c.created_at.desc(), orders.c.id.desc())
        result = await self._session.execute(query)
        return list(result.scalars())

    # ------------------------------------------------------------------
    # Carts
    # ------------------------------------------------------------------
    async def fetch_cart(self, actor_key: str) -> Optional[dict[str, Any]]:
        result = await self._session.execute(
            select(carts.c.payload).where(carts.c.actor_key == actor_key)
        )
        return result.scalar_one_or_none()

    async def save_cart(self, actor_key: str, payload: dict[str, Any]) -> int:
        await self._upsert(
            carts,
            {"actor_key": actor_key, "payload": payload, "updated_at": utc_now()},
            ("actor_key",),
        )
        result = await self._session.execute(
            select(carts.c.id).where(carts.c.actor_key == actor_key)
        )
        return int(result.scalar_one())

    async def delete_cart(self, actor_key: str) -> None:
        await self._session.execute(delete(carts).where(carts.c.actor_key == actor_key))


class SqlStorage(Storage):
    """Storage over an async session factory; one session per transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlTransaction]:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield SqlTransaction(session)
            except IntegrityError as exc:
                logger.warning("Transaction rolled back on constraint violation: %s", exc.orig)
                raise ConflictError(
                    "Storage rejected a duplicate value", {"error": str(exc.orig)}
                ) from exc
            except SQLAlchemyError as exc:
                logger.exception("Transaction rolled back on storage error")
                raise PersistenceError("Storage operation failed", {"error": str(exc)}) from exc
