from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from domain.cancellation.entity import (
    CancellationItem,
    CancellationRequest,
    CancellationStatus,
    CancellationType,
)
from domain.cancellation.policy import RefundPolicy
from domain.common.exceptions import CancellationConflictException, PendingCancellationExistsException
from domain.order.entity import ItemStatus

from conftest import NOW


def _pending(order, user_id, item=None) -> CancellationRequest:
    item = item or order.items[0]
    return CancellationRequest(
        id=None,
        order_id=order.id,
        user_id=user_id,
        cancellation_type=CancellationType.PARTIAL_ITEMS,
        reason="Changed mind",
        items_to_cancel=[CancellationItem(item_id=item.id, quantity=item.quantity, item_total=item.item_total)],
        request_date=NOW,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.mark.asyncio
async def test_database_allows_one_pending_request_per_order(seed, uow_factory):
    customer = await seed.user()
    order = await seed.order(customer)

    async with uow_factory() as uow:
        await uow.cancellation_repository.create(_pending(order, customer.id))

    with pytest.raises(PendingCancellationExistsException):
        async with uow_factory() as uow:
            await uow.cancellation_repository.create(_pending(order, customer.id, order.items[1]))

    async with uow_factory(readonly=True) as uow:
        assert await uow.cancellation_repository.count_requests() == 1


@pytest.mark.asyncio
async def test_cancellation_code_collision_is_not_reported_as_pending(seed, uow_factory):
    customer = await seed.user()
    first_order = await seed.order(customer)
    second_order = await seed.order(customer, code="ORD-1002")

    async with uow_factory() as uow:
        await uow.cancellation_repository.create(replace(_pending(first_order, customer.id), cancellation_code="CXL-SAME"))

    with pytest.raises(CancellationConflictException) as exc_info:
        async with uow_factory() as uow:
            await uow.cancellation_repository.create(
                replace(_pending(second_order, customer.id), cancellation_code="CXL-SAME")
            )

    assert not isinstance(exc_info.value, PendingCancellationExistsException)
    assert exc_info.value.details == {"cancellation_code": "CXL-SAME"}

@pytest.mark.asyncio
async def test_processed_requests_do_not_block_a_new_one(seed, uow_factory):
    customer = await seed.user()
    order = await seed.order(customer)

    async with uow_factory() as uow:
        first = await uow.cancellation_repository.create(_pending(order, customer.id))
        first.reject(admin_id=1, now=NOW)
        await uow.cancellation_repository.update(first)

    async with uow_factory() as uow:
        second = await uow.cancellation_repository.create(_pending(order, customer.id))

    async with uow_factory(readonly=True) as uow:
        pending = await uow.cancellation_repository.get_pending_for_order(order.id)
        latest = await uow.cancellation_repository.get_latest_for_order(order.id)
        rejected = await uow.cancellation_repository.list_requests(status=CancellationStatus.REJECTED)
    assert pending.id == second.id
    assert latest.id == second.id
    assert [r.id for r in rejected] == [first.id]


@pytest.mark.asyncio
async def test_resolve_by_id_or_code(seed, uow_factory):
    customer = await seed.user()
    order = await seed.order(customer)
    async with uow_factory() as uow:
        created = await uow.cancellation_repository.create(_pending(order, customer.id))

    async with uow_factory(readonly=True) as uow:
        repo = uow.cancellation_repository
        assert (await repo.resolve(created.id)).id == created.id
        assert (await repo.resolve(str(created.id))).id == created.id
        assert (await repo.resolve(created.cancellation_code)).id == created.id
        assert await repo.resolve("CXL-UNKNOWN") is None


@pytest.mark.asyncio
async def test_order_round_trip_keeps_items_and_ledger(seed, uow_factory):
    customer = await seed.user()
    order = await seed.order(customer)
    item = order.items[1]

    async with uow_factory() as uow:
        locked = await uow.order_repository.get_for_update(order.order_code)
        locked.apply_cancellation(None, {item.id: Decimal("360.00")}, now=NOW)
        await uow.order_repository.update(locked)

    loaded = await seed.load_order(order.id)
    assert loaded.find_item(item.id).status == ItemStatus.CANCELLED
    assert loaded.find_item(item.id).refund_amount == Decimal("360.00")
    assert [entry.amount for entry in loaded.refund_summary] == [Decimal("360.00")]
    assert loaded.original_total_amt == Decimal("1100.00")
    assert loaded.total_amt == Decimal("700.00")


@pytest.mark.asyncio
async def test_policy_save_keeps_a_single_active_document(seed, uow_factory):
    admin = await seed.user("admin@example.com", is_superuser=True)
    defaults = RefundPolicy()

    async with uow_factory(readonly=True) as uow:
        assert await uow.policy_repository.get_active(defaults) is defaults

    async with uow_factory() as uow:
        await uow.policy_repository.save(RefundPolicy.from_document({"response_time_hours": 24}, base=defaults))
    async with uow_factory() as uow:
        await uow.policy_repository.save(replace(defaults, response_time_hours=12, updated_by=admin.id))

    async with uow_factory(readonly=True) as uow:
        active = await uow.policy_repository.get_active(defaults)
    assert active.response_time_hours == 12
    assert active.updated_by == admin.id


@pytest.mark.asyncio
async def test_duplicate_order_code_is_a_conflict(seed):
    customer = await seed.user()
    await seed.order(customer)

    with pytest.raises(CancellationConflictException) as exc_info:
        await seed.order(customer)

    assert exc_info.value.details == {"order_code": "ORD-1001"}


@pytest.mark.asyncio
async def test_other_integrity_errors_on_orders_propagate(seed, uow_factory, monkeypatch):
    customer = await seed.user()
    order = await seed.load_order((await seed.order(customer)).id)
    draft = replace(
        order,
        id=None,
        order_code="ORD-2001",
        items=[replace(item, id=None) for item in order.items],
        refund_summary=[],
    )

    async def failing_flush(*args, **kwargs):
        raise IntegrityError(
            "INSERT INTO orders (order_code, user_id) VALUES (?, ?)",
            ("ORD-2001", 999),
            Exception("FOREIGN KEY constraint failed"),
        )

    with pytest.raises(IntegrityError):
        async with uow_factory() as uow:
            monkeypatch.setattr(uow.session, "flush", failing_flush)
            await uow.order_repository.create(draft)
