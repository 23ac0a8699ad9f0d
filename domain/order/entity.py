"""
Order aggregate root: line items, totals, statuses and the refund ledger.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from domain.common.exceptions import (
    DomainValidationException,
    RefundExceedsOrderTotalException,
)
from domain.common.money import ZERO, quantize_money, to_decimal


class OrderStatus(str, Enum):
    """Order lifecycle status"""
    PAYMENT_PENDING = "PAYMENT_PENDING"
    ORDER_PLACED = "ORDER_PLACED"
    PROCESSING = "PROCESSING"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCEL_REQUESTED = "CANCEL_REQUESTED"
    PARTIALLY_CANCELLED = "PARTIALLY_CANCELLED"
    CANCELLED = "CANCELLED"
    REFUND_PROCESSING = "REFUND_PROCESSING"


class PaymentStatus(str, Enum):
    """Payment status as seen by the order"""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUND_PROCESSING = "REFUND_PROCESSING"
    PARTIAL_REFUND_PROCESSING = "PARTIAL_REFUND_PROCESSING"
    REFUND_SUCCESSFUL = "REFUND_SUCCESSFUL"
    CANCELLED = "CANCELLED"


class ItemType(str, Enum):
    PRODUCT = "product"
    BUNDLE = "bundle"


class ItemStatus(str, Enum):
    ACTIVE = "Active"
    CANCELLED = "Cancelled"


class ItemRefundStatus(str, Enum):
    PROCESSING = "Processing"
    COMPLETED = "Completed"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class OrderItem:
    """A line item. ``item_total`` falls back to unit price × quantity."""

    id: Optional[int]
    item_type: ItemType
    quantity: int
    unit_price: Decimal
    name: Optional[str] = None
    product_id: Optional[str] = None
    bundle_id: Optional[str] = None
    size: Optional[str] = None
    size_adjusted_price: Optional[Decimal] = None
    item_total: Optional[Decimal] = None
    status: ItemStatus = ItemStatus.ACTIVE
    cancel_approved: bool = False
    refund_status: Optional[ItemRefundStatus] = None
    refund_amount: Decimal = ZERO
    cancellation_request_id: Optional[int] = None

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException(
                f"Item quantity must be positive: {self.quantity}",
                field="quantity",
            )
        self.unit_price = to_decimal(self.unit_price, ZERO)
        if self.size_adjusted_price is not None:
            self.size_adjusted_price = to_decimal(self.size_adjusted_price)
        if self.item_total is None:
            price = self.size_adjusted_price or self.unit_price
            self.item_total = quantize_money(price * self.quantity)
        else:
            self.item_total = to_decimal(self.item_total, ZERO)
        self.refund_amount = to_decimal(self.refund_amount, ZERO)

    @property
    def is_active(self) -> bool:
        """Active means neither cancelled nor approved for cancellation."""
        return self.status != ItemStatus.CANCELLED and not self.cancel_approved

    def mark_cancelled(self, request_id: Optional[int], refund_amount: Decimal) -> None:
        if not self.is_active:
            raise DomainValidationException(
                f"Item {self.id} is already cancelled",
                field="items_to_cancel",
            )
        self.status = ItemStatus.CANCELLED
        self.cancel_approved = True
        self.refund_status = ItemRefundStatus.PROCESSING
        self.refund_amount = refund_amount
        self.cancellation_request_id = request_id


@dataclass
class RefundLedgerEntry:
    """One row of the append-only refund summary. ``item_id`` is None for the delivery charge."""

    item_id: Optional[int]
    cancellation_request_id: Optional[int]
    amount: Decimal
    status: ItemRefundStatus = ItemRefundStatus.PROCESSING
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    processed_date: Optional[datetime] = None

    def __post_init__(self):
        self.amount = to_decimal(self.amount, ZERO)
        self.created_at = _ensure_utc(self.created_at)
        self.processed_date = _ensure_utc(self.processed_date)

    @property
    def is_delivery_charge(self) -> bool:
        return self.item_id is None


@dataclass
class OrderRefundDetails:
    refund_id: str
    refund_amount: Decimal
    refund_percentage: Decimal
    refund_date: datetime
    retained_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "refund_id": self.refund_id,
            "refund_amount": str(self.refund_amount),
            "refund_percentage": str(self.refund_percentage),
            "refund_date": self.refund_date.isoformat(),
            "retained_amount": str(self.retained_amount),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["OrderRefundDetails"]:
        if not data:
            return None
        return cls(
            refund_id=data["refund_id"],
            refund_amount=to_decimal(data.get("refund_amount"), ZERO),
            refund_percentage=to_decimal(data.get("refund_percentage"), ZERO),
            refund_date=_ensure_utc(datetime.fromisoformat(data["refund_date"])),
            retained_amount=to_decimal(data.get("retained_amount"), ZERO),
        )


@dataclass
class Order:
    """
    Order aggregate root

    Business rules:
    1. total_amt = Σ active item totals + delivery charge while any item is active
    2. the delivery charge is only dropped when the last active item is cancelled
    3. the refund ledger is append-only and never exceeds original_total_amt
    """

    id: Optional[int]
    order_code: str
    user_id: int
    items: list[OrderItem]
    delivery_charge: Decimal = ZERO
    sub_total_amt: Optional[Decimal] = None
    total_amt: Optional[Decimal] = None
    original_total_amt: Optional[Decimal] = None
    total_quantity: int = 0
    order_status: OrderStatus = OrderStatus.ORDER_PLACED
    payment_status: PaymentStatus = PaymentStatus.PAID
    payment_method: str = "ONLINE"
    order_date: Optional[datetime] = None
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    delivery_notes: Optional[str] = None
    is_full_order_cancelled: bool = False
    refund_summary: list[RefundLedgerEntry] = field(default_factory=list)
    refund_details: Optional[OrderRefundDetails] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.order_code:
            raise DomainValidationException("Order code is required", field="order_code")
        self.delivery_charge = to_decimal(self.delivery_charge, ZERO)
        if self.delivery_charge < 0:
            raise DomainValidationException(
                f"Delivery charge cannot be negative: {self.delivery_charge}",
                field="delivery_charge",
            )
        if self.sub_total_amt is None or self.total_amt is None:
            self.recalculate_totals()
        else:
            self.sub_total_amt = to_decimal(self.sub_total_amt, ZERO)
            self.total_amt = to_decimal(self.total_amt, ZERO)
            if not self.total_quantity:
                self.total_quantity = sum(i.quantity for i in self.active_items())
        if self.original_total_amt is None:
            self.original_total_amt = self.total_amt
        else:
            self.original_total_amt = to_decimal(self.original_total_amt, ZERO)
        self.order_date = _ensure_utc(self.order_date)
        self.estimated_delivery_date = _ensure_utc(self.estimated_delivery_date)
        self.actual_delivery_date = _ensure_utc(self.actual_delivery_date)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.order_date is None:
            self.order_date = self.created_at

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def active_items(self) -> list[OrderItem]:
        return [item for item in self.items if item.is_active]

    def find_item(self, item_id: int) -> Optional[OrderItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def refunded_total(self) -> Decimal:
        return sum((entry.amount for entry in self.refund_summary), ZERO)

    def is_online_payment(self, markers: Iterable[str]) -> bool:
        method = (self.payment_method or "").lower()
        return any(marker in method for marker in markers)

    def was_past_delivery_date(self, now: datetime) -> bool:
        """Past the estimated date and still not delivered."""
        if self.estimated_delivery_date is None or self.actual_delivery_date is not None:
            return False
        return _ensure_utc(now) > self.estimated_delivery_date

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------
    def recalculate_totals(self) -> None:
        active = self.active_items()
        self.sub_total_amt = quantize_money(sum((i.item_total for i in active), ZERO))
        delivery = self.delivery_charge if active else ZERO
        self.total_amt = quantize_money(self.sub_total_amt + delivery)
        self.total_quantity = sum(i.quantity for i in active)

    def hold_for_cancellation(self) -> OrderStatus:
        """Move to CANCEL_REQUESTED and return the status to restore on rejection."""
        previous = self.order_status
        self.order_status = OrderStatus.CANCEL_REQUESTED
        self.updated_at = datetime.now(timezone.utc)
        return previous

    def release_cancellation_hold(self, previous: Optional[OrderStatus]) -> None:
        if self.order_status == OrderStatus.CANCEL_REQUESTED:
            self.order_status = previous or OrderStatus.ORDER_PLACED
            self.updated_at = datetime.now(timezone.utc)

    def apply_cancellation(
        self,
        request_id: Optional[int],
        item_refunds: dict[int, Decimal],
        delivery_refund: Decimal = ZERO,
        *,
        now: Optional[datetime] = None,
    ) -> list[RefundLedgerEntry]:
        """
        Cancel the given items and append their refunds to the ledger.

        ``item_refunds`` maps item id to refund amount. Returns the new ledger entries.
        """
        now = _ensure_utc(now) or datetime.now(timezone.utc)
        new_total = sum(item_refunds.values(), ZERO) + delivery_refund
        if self.refunded_total() + new_total > self.original_total_amt:
            raise RefundExceedsOrderTotalException(
                str(self.refunded_total() + new_total), str(self.original_total_amt)
            )

        entries: list[RefundLedgerEntry] = []
        for item_id, amount in item_refunds.items():
            item = self.find_item(item_id)
            if item is None:
                raise DomainValidationException(
                    f"Item {item_id} not found in order {self.order_code}",
                    field="items_to_cancel",
                )
            item.mark_cancelled(request_id, amount)
            entries.append(RefundLedgerEntry(
                item_id=item_id,
                cancellation_request_id=request_id,
                amount=amount,
                created_at=now,
            ))
        if delivery_refund > 0:
            entries.append(RefundLedgerEntry(
                item_id=None,
                cancellation_request_id=request_id,
                amount=delivery_refund,
                created_at=now,
            ))
        self.refund_summary.extend(entries)

        self.recalculate_totals()
        if not self.active_items():
            self.order_status = OrderStatus.CANCELLED
            self.payment_status = PaymentStatus.REFUND_PROCESSING
            self.is_full_order_cancelled = True
        else:
            self.order_status = OrderStatus.PARTIALLY_CANCELLED
            self.payment_status = PaymentStatus.PARTIAL_REFUND_PROCESSING
        self.updated_at = now
        return entries

    def complete_refund(
        self,
        request_id: Optional[int],
        *,
        refund_id: str,
        refund_amount: Decimal,
        refund_percentage: Decimal,
        refund_date: datetime,
    ) -> None:
        """Mark the items and ledger rows of one request as refunded."""
        for item in self.items:
            if item.cancellation_request_id == request_id:
                item.refund_status = ItemRefundStatus.COMPLETED
        for entry in self.refund_summary:
            if entry.cancellation_request_id == request_id:
                entry.status = ItemRefundStatus.COMPLETED
                entry.processed_date = refund_date
        self.payment_status = PaymentStatus.REFUND_SUCCESSFUL
        self.refund_details = OrderRefundDetails(
            refund_id=refund_id,
            refund_amount=refund_amount,
            refund_percentage=refund_percentage,
            refund_date=refund_date,
            retained_amount=quantize_money(self.original_total_amt - self.refunded_total()),
        )
        self.updated_at = refund_date

    def update_status(self, status: OrderStatus, *, now: Optional[datetime] = None) -> None:
        now = _ensure_utc(now) or datetime.now(timezone.utc)
        self.order_status = status
        if status == OrderStatus.DELIVERED and self.actual_delivery_date is None:
            self.actual_delivery_date = now
        self.updated_at = now

    def update_delivery_date(self, estimated: datetime, notes: Optional[str] = None) -> None:
        self.estimated_delivery_date = _ensure_utc(estimated)
        if notes is not None:
            self.delivery_notes = notes
        self.updated_at = datetime.now(timezone.utc)
