from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException, RefundExceedsOrderTotalException
from domain.order.entity import ItemType, Order, OrderItem, OrderStatus, PaymentStatus


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _order() -> Order:
    return Order(
        id=1,
        order_code="ORD-1",
        user_id=7,
        items=[
            OrderItem(id=11, item_type=ItemType.PRODUCT, quantity=2, unit_price=Decimal("300")),
            OrderItem(id=12, item_type=ItemType.BUNDLE, quantity=1, unit_price=Decimal("450"),
                      size_adjusted_price=Decimal("400")),
        ],
        delivery_charge=Decimal("100"),
    )


def test_totals_follow_active_items():
    order = _order()
    assert order.items[0].item_total == Decimal("600.00")
    assert order.items[1].item_total == Decimal("400.00")
    assert order.total_amt == Decimal("1100.00")
    assert order.original_total_amt == Decimal("1100.00")
    assert order.total_quantity == 3


def test_ledger_never_exceeds_original_total():
    order = _order()
    order.apply_cancellation(5, {12: Decimal("400")}, now=NOW)

    with pytest.raises(RefundExceedsOrderTotalException):
        order.apply_cancellation(6, {11: Decimal("600")}, Decimal("101"), now=NOW)

    # the refused cancellation left nothing behind
    assert order.refunded_total() == Decimal("400")
    assert [item.id for item in order.active_items()] == [11]
    assert order.order_status == OrderStatus.PARTIALLY_CANCELLED


def test_last_item_cancels_the_order():
    order = _order()
    entries = order.apply_cancellation(5, {11: Decimal("540"), 12: Decimal("360")}, Decimal("90"), now=NOW)
    assert len(entries) == 3
    assert entries[-1].is_delivery_charge
    assert order.order_status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.REFUND_PROCESSING
    assert order.is_full_order_cancelled
    assert order.total_amt == Decimal("0.00")


def test_cancelled_item_cannot_be_cancelled_again():
    order = _order()
    order.apply_cancellation(5, {12: Decimal("10")}, now=NOW)
    with pytest.raises(DomainValidationException):
        order.apply_cancellation(6, {12: Decimal("10")}, now=NOW)


def test_hold_and_release():
    order = _order()
    previous = order.hold_for_cancellation()
    assert order.order_status == OrderStatus.CANCEL_REQUESTED
    order.release_cancellation_hold(previous)
    assert order.order_status == OrderStatus.ORDER_PLACED


def test_delivered_status_records_delivery_date():
    order = _order()
    order.update_status(OrderStatus.DELIVERED, now=NOW)
    assert order.actual_delivery_date == NOW
