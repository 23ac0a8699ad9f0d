from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from application.dtos.cancellation import (
    BonusesDTO,
    CancellationItemInputDTO,
    CancellationRequestCreateDTO,
    CompleteRefundDTO,
    PolicyUpdateDTO,
    ProcessCancellationDTO,
)
from application.dtos.orders import DeliveryDateUpdateDTO, OrderStatusUpdateDTO
from application.services.cancellation_service import CancellationApplicationService
from application.services.order_service import OrderApplicationService
from domain.cancellation.entity import CancellationAction, CancellationStatus, RefundStatus
from domain.cancellation.policy import CalculationMethod
from domain.common.exceptions import (
    CancellationConflictException,
    CancellationIneligibleException,
    CancellationValidationException,
    OrderNotFoundException,
    OrderUnderReviewException,
    PendingCancellationExistsException,
    RefundCalculationError,
)
from domain.order.entity import ItemStatus, OrderStatus, PaymentStatus
from domain.user.entity import MembershipTier
from infrastructure.repositories.cancellation_repository import SQLAlchemyCancellationRequestRepository

from conftest import NOW, RecordingNotifier


@pytest.fixture
def service(uow_factory, notifier, clock):
    return CancellationApplicationService(uow_factory=uow_factory, notifier=notifier, clock=clock)


@pytest.fixture
def order_service(uow_factory, clock):
    return OrderApplicationService(uow_factory=uow_factory, clock=clock)


def _full(order_ref, reason="Changed mind", **extra):
    return CancellationRequestCreateDTO(order_ref=order_ref, reason=reason, **extra)


def _partial(order_ref, *item_ids, reason="Wrong item ordered"):
    return CancellationRequestCreateDTO(
        order_ref=order_ref,
        reason=reason,
        items_to_cancel=[CancellationItemInputDTO(item_id=i) for i in item_ids],
    )


def _approve(request_id, **extra):
    return ProcessCancellationDTO(request_id=request_id, action=CancellationAction.APPROVE, **extra)


async def _customer_and_admin(seed, **customer_kwargs):
    customer = await seed.user("alice@example.com", **customer_kwargs)
    admin = await seed.user("admin@example.com", is_superuser=True)
    return customer, admin


@pytest.mark.asyncio
async def test_full_order_cancellation_refunds_delivery(service, seed, notifier):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)

    result = await service.request_cancellation(customer.id, _full(order.id))
    assert result.status == CancellationStatus.PENDING
    assert result.cancellation_type == "FULL_ORDER"
    assert result.refund_percentage == Decimal("90")
    assert result.expected_refund == Decimal("990.00")
    assert result.delivery_refund == Decimal("90.00")
    assert result.refund_calculation["cancellation_timing"] == "EARLY"

    held = await seed.load_order(order.id)
    assert held.order_status == OrderStatus.CANCEL_REQUESTED

    processed = await service.process_cancellation_request(admin.id, _approve(result.request_id))
    assert processed.status == CancellationStatus.APPROVED
    assert processed.refund_amount == Decimal("990.00")
    assert processed.order_status == OrderStatus.CANCELLED.value
    assert processed.payment_status == PaymentStatus.REFUND_PROCESSING.value

    cancelled = await seed.load_order(order.id)
    assert cancelled.is_full_order_cancelled
    assert cancelled.total_amt == Decimal("0")
    assert cancelled.refunded_total() == Decimal("990.00")
    assert any(entry.is_delivery_charge for entry in cancelled.refund_summary)
    assert notifier.templates() == ["cancellation_requested", "cancellation_approved"]


@pytest.mark.asyncio
async def test_partial_cancellation_excludes_delivery(service, seed):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)
    second = order.items[1]

    result = await service.request_cancellation(customer.id, _partial(order.id, second.id))
    assert result.cancellation_type == "PARTIAL_ITEMS"
    assert result.expected_refund == Decimal("360.00")
    assert result.delivery_refund == Decimal("0")

    processed = await service.process_cancellation_request(admin.id, _approve(result.request_id))
    assert processed.order_status == OrderStatus.PARTIALLY_CANCELLED.value
    assert processed.payment_status == PaymentStatus.PARTIAL_REFUND_PROCESSING.value

    updated = await seed.load_order(order.id)
    assert [item.id for item in updated.active_items()] == [order.items[0].id]
    assert updated.total_amt == Decimal("700.00")
    assert updated.refunded_total() == Decimal("360.00")
    assert not any(entry.is_delivery_charge for entry in updated.refund_summary)


@pytest.mark.asyncio
async def test_cancelling_last_active_item_refunds_delivery(service, seed):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)
    first, second = order.items

    partial = await service.request_cancellation(customer.id, _partial(order.id, second.id))
    await service.process_cancellation_request(admin.id, _approve(partial.request_id))

    last = await service.request_cancellation(customer.id, _partial(order.order_code, first.id))
    assert last.delivery_refund == Decimal("90.00")
    assert last.expected_refund == Decimal("630.00")

    processed = await service.process_cancellation_request(admin.id, _approve(last.request_id))
    assert processed.order_status == OrderStatus.CANCELLED.value

    final = await seed.load_order(order.id)
    assert final.active_items() == []
    assert final.refunded_total() == Decimal("990.00")
    assert final.refunded_total() <= final.original_total_amt


@pytest.mark.asyncio
async def test_reject_restores_order_without_financial_changes(service, seed, notifier):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer, order_status=OrderStatus.PROCESSING)

    result = await service.request_cancellation(customer.id, _full(order.id))
    processed = await service.process_cancellation_request(
        admin.id,
        ProcessCancellationDTO(request_id=result.cancellation_code, action="rejected", comments="Already packed"),
    )
    assert processed.status == CancellationStatus.REJECTED
    assert processed.order_status == OrderStatus.PROCESSING.value
    assert processed.refund_amount == Decimal("0")

    restored = await seed.load_order(order.id)
    assert restored.order_status == OrderStatus.PROCESSING
    assert restored.refund_summary == []
    assert restored.total_amt == Decimal("1100.00")
    assert all(item.is_active for item in restored.items)
    assert notifier.templates()[-1] == "cancellation_rejected"
    assert notifier.sent[-1]["context"]["comments"] == "Already packed"


@pytest.mark.asyncio
async def test_second_request_while_pending_is_a_conflict(service, seed):
    customer, _ = await _customer_and_admin(seed)
    order = await seed.order(customer)
    first, second = order.items

    await service.request_cancellation(customer.id, _partial(order.id, first.id))
    with pytest.raises(PendingCancellationExistsException) as exc:
        await service.request_cancellation(customer.id, _partial(order.id, second.id))
    assert isinstance(exc.value, CancellationConflictException)

    items, total = await service.list_user_requests(customer.id)
    assert total == 1
    assert len(items) == 1


@pytest.mark.asyncio
async def test_complete_refund_only_once(service, seed, notifier):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)
    result = await service.request_cancellation(customer.id, _full(order.id))
    await service.process_cancellation_request(admin.id, _approve(result.request_id))

    completed = await service.complete_refund(
        admin.id, CompleteRefundDTO(request_id=result.request_id, transaction_ref="txn_123")
    )
    assert completed.refund_id == "txn_123"
    assert completed.refund_amount == Decimal("990.00")
    assert completed.payment_status == PaymentStatus.REFUND_SUCCESSFUL.value
    assert notifier.templates()[-1] == "refund_invoice"

    with pytest.raises(CancellationConflictException):
        await service.complete_refund(admin.id, CompleteRefundDTO(request_id=result.request_id, transaction_ref="txn_999"))

    request = await service.get_request(result.request_id)
    assert request.refund_status == RefundStatus.COMPLETED
    assert request.refund_details["refund_id"] == "txn_123"

    refunded = await seed.load_order(order.id)
    assert refunded.refund_details.refund_id == "txn_123"
    assert refunded.refund_details.retained_amount == Decimal("110.00")


@pytest.mark.asyncio
async def test_complete_refund_generates_reference(service, seed):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)
    result = await service.request_cancellation(customer.id, _full(order.id))
    await service.process_cancellation_request(admin.id, _approve(result.request_id))

    completed = await service.complete_refund(admin.id, CompleteRefundDTO(request_id=result.request_id))
    assert completed.refund_id == f"REF-{int(NOW.timestamp() * 1000)}"


@pytest.mark.asyncio
async def test_complete_refund_requires_approval(service, seed):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)
    result = await service.request_cancellation(customer.id, _full(order.id))

    with pytest.raises(CancellationConflictException):
        await service.complete_refund(admin.id, CompleteRefundDTO(request_id=result.request_id))


@pytest.mark.asyncio
async def test_processed_request_cannot_be_processed_again(service, seed):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)
    result = await service.request_cancellation(customer.id, _full(order.id))
    await service.process_cancellation_request(admin.id, _approve(result.request_id))

    with pytest.raises(CancellationConflictException):
        await service.process_cancellation_request(
            admin.id, ProcessCancellationDTO(request_id=result.request_id, action="REJECT")
        )


@pytest.mark.asyncio
async def test_failed_approval_leaves_order_and_request_untouched(service, seed, notifier, monkeypatch):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)
    result = await service.request_cancellation(customer.id, _full(order.id))
    sent_before = len(notifier.sent)

    async def failing_update(self, request):
        raise SQLAlchemyError("connection lost")

    # fails after the order row has been written in the same transaction
    monkeypatch.setattr(SQLAlchemyCancellationRequestRepository, "update", failing_update)
    with pytest.raises(SQLAlchemyError):
        await service.process_cancellation_request(admin.id, _approve(result.request_id))
    monkeypatch.undo()

    unchanged = await seed.load_order(order.id)
    assert unchanged.order_status == OrderStatus.CANCEL_REQUESTED
    assert unchanged.payment_status == PaymentStatus.PAID
    assert unchanged.total_amt == Decimal("1100.00")
    assert unchanged.refund_summary == []
    assert [item.status for item in unchanged.items] == [ItemStatus.ACTIVE, ItemStatus.ACTIVE]

    request = await service.get_request(result.request_id)
    assert request.status == CancellationStatus.PENDING
    assert len(notifier.sent) == sent_before

@pytest.mark.asyncio
async def test_admin_override_replaces_tier_percentage(service, seed):
    customer, admin = await _customer_and_admin(seed, membership_tier=MembershipTier.VIP)
    order = await seed.order(customer)
    result = await service.request_cancellation(customer.id, _full(order.id))
    assert result.refund_percentage == Decimal("95")

    processed = await service.process_cancellation_request(
        admin.id, _approve(result.request_id, override_percentage=Decimal("60"))
    )
    # override replaces the tier base; the VIP bonus still applies
    assert processed.refund_percentage == Decimal("65")
    assert processed.refund_amount == Decimal("715.00")


@pytest.mark.asyncio
async def test_other_customers_order_is_not_found(service, seed):
    customer, _ = await _customer_and_admin(seed)
    stranger = await seed.user("bob@example.com")
    order = await seed.order(customer)

    with pytest.raises(OrderNotFoundException):
        await service.request_cancellation(stranger.id, _full(order.id))
    with pytest.raises(OrderNotFoundException):
        await service.get_request_for_order(stranger, order.order_code)


@pytest.mark.asyncio
async def test_unknown_order_is_not_found(service, seed):
    customer, _ = await _customer_and_admin(seed)
    with pytest.raises(OrderNotFoundException):
        await service.request_cancellation(customer.id, _full("ORD-MISSING"))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "order_kwargs",
    [
        {"order_status": OrderStatus.DELIVERED},
        {"order_status": OrderStatus.OUT_FOR_DELIVERY},
        {"payment_method": "COD"},
        {"payment_status": PaymentStatus.FAILED},
    ],
)
async def test_ineligible_orders_are_refused(service, seed, order_kwargs):
    customer, _ = await _customer_and_admin(seed)
    order = await seed.order(customer, **order_kwargs)
    with pytest.raises(CancellationIneligibleException):
        await service.request_cancellation(customer.id, _full(order.id))


@pytest.mark.asyncio
async def test_duplicate_item_selection_is_rejected(service, seed):
    customer, _ = await _customer_and_admin(seed)
    order = await seed.order(customer)
    first = order.items[0]
    with pytest.raises(CancellationValidationException):
        await service.request_cancellation(customer.id, _partial(order.id, first.id, first.id))


@pytest.mark.asyncio
async def test_items_are_cancelled_whole(service, seed):
    customer, _ = await _customer_and_admin(seed)
    order = await seed.order(customer)
    dto = CancellationRequestCreateDTO(
        order_ref=order.id,
        reason="Changed mind",
        items_to_cancel=[CancellationItemInputDTO(item_id=order.items[0].id, quantity=2)],
    )
    with pytest.raises(CancellationValidationException):
        await service.request_cancellation(customer.id, dto)


@pytest.mark.asyncio
async def test_client_refund_amount_above_item_total_is_rejected(service, seed):
    customer, _ = await _customer_and_admin(seed)
    order = await seed.order(customer)
    dto = CancellationRequestCreateDTO(
        order_ref=order.id,
        reason="Changed mind",
        items_to_cancel=[CancellationItemInputDTO(item_id=order.items[0].id, refund_amount=Decimal("700"))],
    )
    with pytest.raises(CancellationValidationException):
        await service.request_cancellation(customer.id, dto)


@pytest.mark.asyncio
async def test_engine_failure_falls_back_to_legacy_percentage(service, seed, monkeypatch):
    customer, _ = await _customer_and_admin(seed)
    order = await seed.order(customer)

    def broken(*args, **kwargs):
        raise RefundCalculationError()

    monkeypatch.setattr("domain.cancellation.service.calculate_refund", broken)
    result = await service.request_cancellation(customer.id, _full(order.id))
    assert result.refund_percentage == Decimal("75")
    assert result.expected_refund == Decimal("825.00")
    assert result.refund_calculation["calculation_method"] == CalculationMethod.LEGACY_FLAT.value


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_the_request(uow_factory, clock, seed):
    service = CancellationApplicationService(uow_factory=uow_factory, notifier=RecordingNotifier(fail=True), clock=clock)
    customer, _ = await _customer_and_admin(seed)
    order = await seed.order(customer)

    result = await service.request_cancellation(customer.id, _full(order.id))
    assert result.status == CancellationStatus.PENDING


@pytest.mark.asyncio
async def test_latest_request_for_order(service, seed):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)
    assert await service.get_request_for_order(customer, order.id) is None

    result = await service.request_cancellation(customer.id, _full(order.order_code))
    own = await service.get_request_for_order(customer, order.order_code)
    assert own.cancellation_code == result.cancellation_code
    as_admin = await service.get_request_for_order(admin, str(order.id))
    assert as_admin.id == result.request_id


@pytest.mark.asyncio
async def test_refund_listing_and_stats(service, seed):
    customer, admin = await _customer_and_admin(seed)
    scheduled = await seed.order(customer, code="ORD-2001", estimated_delivery_date=NOW + timedelta(days=3))
    undated = await seed.order(customer, code="ORD-2002")
    late = await seed.order(customer, code="ORD-2003", estimated_delivery_date=NOW - timedelta(hours=6))

    approved = []
    for order in (scheduled, undated, late):
        result = await service.request_cancellation(customer.id, _full(order.id))
        await service.process_cancellation_request(admin.id, _approve(result.request_id))
        approved.append(result)

    refunds, total = await service.list_refunds()
    assert total == 3
    by_code = {entry.order_code: entry for entry in refunds}
    assert by_code["ORD-2003"].delivery_context.is_overdue
    assert by_code["ORD-2001"].delivery_context.has_estimated_date
    assert not by_code["ORD-2002"].delivery_context.has_estimated_date
    assert by_code["ORD-2001"].customer_email == customer.email

    mine = await service.list_user_refunds(customer.id)
    assert len(mine) == 3

    stats = await service.refund_stats()
    assert stats.total_refunds == 3
    assert stats.by_refund_status == {"PROCESSING": 3}
    insights = stats.delivery_insights
    assert insights.by_delivery_status["pending_delivery"] == 1
    assert insights.by_delivery_status["no_delivery_date"] == 1
    assert insights.by_delivery_status["overdue"] == 1
    assert insights.cancelled_with_overdue_delivery == 1
    assert insights.average_days_before_cancellation == 1
    # the overdue order carried a 10 point penalty: 1100 * 80%
    assert stats.refund_amounts_by_delivery_status["overdue_delivery"] == Decimal("880.00")
    assert stats.refund_amounts_by_delivery_status["before_delivery"] == Decimal("990.00")
    assert stats.total_refund_amount == Decimal("2860.00")


@pytest.mark.asyncio
async def test_policy_update_changes_next_estimate(service, seed):
    customer, admin = await _customer_and_admin(seed, membership_tier=MembershipTier.VIP)
    order = await seed.order(customer)

    updated = await service.update_policy(admin.id, PolicyUpdateDTO(bonuses=BonusesDTO(vip_bonus=Decimal("8"))))
    assert updated.document["bonuses"]["vip_bonus"] == "8"
    assert updated.updated_by == admin.id

    policy = await service.get_policy()
    assert policy.document["bonuses"]["loyalty_bonus"] == "2"

    result = await service.request_cancellation(customer.id, _full(order.id))
    assert result.refund_percentage == Decimal("98")


@pytest.mark.asyncio
async def test_order_changes_blocked_while_request_pending(service, order_service, seed):
    customer, admin = await _customer_and_admin(seed)
    order = await seed.order(customer)
    result = await service.request_cancellation(customer.id, _partial(order.id, order.items[0].id))

    permission = await order_service.check_modification_permission(order.order_code)
    assert not permission.can_modify
    assert permission.pending_request_id == result.request_id

    with pytest.raises(OrderUnderReviewException):
        await order_service.update_order_status(order.id, OrderStatusUpdateDTO(status=OrderStatus.PROCESSING))
    with pytest.raises(OrderUnderReviewException):
        await order_service.update_delivery_date(
            order.id, DeliveryDateUpdateDTO(estimated_delivery_date=NOW + timedelta(days=5))
        )

    await service.process_cancellation_request(
        admin.id, ProcessCancellationDTO(request_id=result.request_id, action="REJECT")
    )
    assert (await order_service.check_modification_permission(order.id)).can_modify

    delivered = await order_service.update_order_status(order.id, OrderStatusUpdateDTO(status="DELIVERED"))
    assert delivered.order_status == OrderStatus.DELIVERED.value
    assert delivered.actual_delivery_date == NOW
