"""Integration tests for OrderRepository against SQLite storage."""

from datetime import timedelta

import pytest
from libs.common.config import Settings
from libs.common.currency import Money
from libs.common.datetime_utils import utc_now
from services.shop_service.domain import (
    ConflictError,
    PersistenceError,
    ShippingSelection,
)
from services.shop_service.models import (
    OrderItemMetaRecord,
    OrderItemRecord,
    OrderMetaRecord,
    OrderRecord,
    OrderStatus,
)
from services.shop_service.numbering import OrderNumberAllocator
from services.shop_service.repository import OrderRepository
from services.shop_service.storage import SqlStorage
from sqlalchemy import func, select
from tests.factories import make_item, make_order


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _count(session_factory, model, *where) -> int:
    async with session_factory() as session:
        query = select(func.count()).select_from(model)
        if where:
            query = query.where(*where)
        return (await session.execute(query)).scalar_one()


class FixedAllocator(OrderNumberAllocator):
    """Hands out a scripted sequence of numbers."""

    def __init__(self, *numbers):
        self.numbers = list(numbers)

    async def next_number(self, tx):
        return self.numbers.pop(0)


class FailingStorage(SqlStorage):
    """SQL storage whose transactions fail on the first order meta write."""

    def transaction(self):
        return _FailingTransaction(super().transaction())


class _FailingTransaction:
    def __init__(self, inner):
        self.inner = inner

    async def __aenter__(self):
        tx = await self.inner.__aenter__()

        async def fail(*args, **kwargs):
            raise PersistenceError("disk full")

        tx.upsert_order_meta = fail
        return tx

    async def __aexit__(self, *exc_info):
        return await self.inner.__aexit__(*exc_info)


# ---------------------------------------------------------------------------
# save: identity and numbering
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_first_save_assigns_id_and_number(repository):
    order = make_order()

    await repository.save(order)

    assert order.id is not None
    assert order.number == 1
    assert order.items[0].id is not None
    assert order.title == "Order #1"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_number_is_max_plus_one(repository):
    first = await repository.save(make_order())
    legacy = make_order(number=40)
    await repository.save(legacy)

    order = await repository.save(make_order())

    assert first.number == 1
    assert order.number == 41
    assert order.number > legacy.number


@pytest.mark.asyncio
@pytest.mark.integration
async def test_second_save_is_idempotent(repository, session_factory):
    order = make_order(items=[make_item(), make_item(name="Towel", product_id=2)])
    await repository.save(order)
    ids = (order.id, order.number, [item.id for item in order.items])
    first_updated = order.updated_at

    await repository.save(order)

    assert (order.id, order.number, [item.id for item in order.items]) == ids
    assert order.updated_at >= first_updated
    assert await _count(session_factory, OrderItemRecord) == 2
    assert await _count(session_factory, OrderRecord) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_number_conflict_is_retried(storage, repository, settings):
    taken = await repository.save(make_order())
    retrying = OrderRepository(
        storage, allocator=FixedAllocator(taken.number, 7), settings=settings
    )

    order = await retrying.save(make_order())

    assert order.number == 7


@pytest.mark.asyncio
@pytest.mark.integration
async def test_number_conflict_gives_up_after_retries(storage, repository):
    taken = await repository.save(make_order())
    retrying = OrderRepository(
        storage,
        allocator=FixedAllocator(taken.number),
        settings=Settings(ORDER_NUMBER_MAX_RETRIES=1),
    )
    order = make_order()

    with pytest.raises(ConflictError):
        await retrying.save(order)

    assert order.id is None
    assert order.number is None


# ---------------------------------------------------------------------------
# save: item reconciliation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_removing_all_items_deletes_all_rows(repository, session_factory):
    order = make_order(items=[make_item(), make_item(name="Towel", product_id=2)])
    await repository.save(order)

    for item in list(order.items):
        order.remove_item(item.id)
    await repository.save(order)

    assert await _count(session_factory, OrderItemRecord) == 0
    assert await _count(session_factory, OrderItemMetaRecord) == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reconciliation_by_identity(repository):
    keep = make_item(name="Cap")
    drop = make_item(name="Towel", product_id=2)
    order = make_order(items=[keep, drop])
    await repository.save(order)

    order.remove_item(drop.id)
    order.update_quantity(keep.id, 4)
    added = order.add_item(make_item(name="Fins", product_id=3))
    await repository.save(order)

    loaded = await repository.find(order.id)
    assert [(i.id, i.name, i.quantity) for i in loaded.items] == [
        (keep.id, "Cap", 4),
        (added.id, "Fins", 1),
    ]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_item_meta_is_replaced_not_duplicated(repository, session_factory):
    item = make_item(tax={"standard": "1.00"}, meta={"size": "M", "colour": "red"})
    order = make_order(items=[item])
    await repository.save(order)

    item.set_meta("size", "L")
    item.remove_meta("colour")
    item.set_tax("standard", Money.of("1.50"))
    await repository.save(order)
    await repository.save(order)

    where = OrderItemMetaRecord.item_id == item.id
    assert await _count(session_factory, OrderItemMetaRecord, where) == 2
    loaded = (await repository.find(order.id)).items[0]
    assert loaded.meta == {"size": "L"}
    assert loaded.tax == {"standard": Money.of("1.50")}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_status_and_note_stay_out_of_meta(repository, session_factory):
    order = make_order()
    order.customer_note = "Ring twice"
    await repository.save(order)

    async with session_factory() as session:
        keys = set(
            (
                await session.execute(
                    select(OrderMetaRecord.meta_key).where(OrderMetaRecord.order_id == order.id)
                )
            ).scalars()
        )
    assert "status" not in keys
    assert "customer_note" not in keys
    assert {"customer", "shipping", "total", "updated_at"} <= keys


@pytest.mark.asyncio
@pytest.mark.integration
async def test_status_change_updates_header(repository, session_factory):
    order = await repository.save(make_order())

    order.set_status("on-hold")
    await repository.save(order)

    async with session_factory() as session:
        record = await session.get(OrderRecord, order.id)
    assert record.status is OrderStatus.ON_HOLD
    assert record.number == order.number


# ---------------------------------------------------------------------------
# save: failure
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_failed_save_rolls_back_and_restores_order(session_factory, settings):
    repository = OrderRepository(FailingStorage(session_factory), settings=settings)
    order = make_order()
    before = order.updated_at

    with pytest.raises(PersistenceError):
        await repository.save(order)

    assert order.id is None
    assert order.number is None
    assert order.items[0].id is None
    assert order.updated_at == before
    assert await _count(session_factory, OrderRecord) == 0
    assert await _count(session_factory, OrderItemRecord) == 0


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_read_back_reproduces_order(repository):
    order = make_order(items=[make_item(price="10.00", quantity=2, tax={"standard": "1.00"})])
    order.set_shipping(ShippingSelection("flat", Money.of("5.00"), "Flat rate", {"rate": 500}))
    order.set_payment("cheque")
    order.add_coupon("SPRING")
    order.customer_note = "Ring twice"
    await repository.save(order)

    loaded = await repository.find_by_number(order.number)

    assert loaded.id == order.id
    assert loaded.key == order.key
    assert loaded.total == Money.of("26.00")
    assert loaded.tax == {"standard": Money.of("1.00")}
    assert loaded.shipping == order.shipping
    assert loaded.payment == "cheque"
    assert loaded.coupons == ["SPRING"]
    assert loaded.customer_note == "Ring twice"
    assert loaded.customer == order.customer
    assert loaded.customer.billing_address.company == "Acme"
    assert (await repository.find_by_key(order.key)).id == order.id


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_orders_read_as_none(repository):
    assert await repository.find(404) is None
    assert await repository.find_by_number(404) is None
    assert await repository.find_by_key("order_missing") is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_find_old_pending_and_processing(repository):
    old = utc_now() - timedelta(days=45)
    stale_pending = await repository.save(make_order(created_at=old))
    await repository.save(make_order())
    stale_processing = make_order(created_at=old, status=OrderStatus.PROCESSING)
    await repository.save(stale_processing)

    assert [o.id for o in await repository.find_old_pending()] == [stale_pending.id]
    assert [o.id for o in await repository.find_old_processing()] == [stale_processing.id]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_find_from_month_skips_closed_orders(repository):
    now = utc_now()
    placed = await repository.save(make_order())
    await repository.save(make_order(status=OrderStatus.CANCELLED))
    await repository.save(make_order(status=OrderStatus.REFUNDED))
    await repository.save(make_order(created_at=now - timedelta(days=400)))

    found = await repository.find_from_month(now.month, now.year)

    assert [o.id for o in found] == [placed.id]
