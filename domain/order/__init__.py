from .entity import (
    ItemRefundStatus,
    ItemStatus,
    ItemType,
    Order,
    OrderItem,
    OrderRefundDetails,
    OrderStatus,
    PaymentStatus,
    RefundLedgerEntry,
)

__all__ = [
    "ItemRefundStatus",
    "ItemStatus",
    "ItemType",
    "Order",
    "OrderItem",
    "OrderRefundDetails",
    "OrderStatus",
    "PaymentStatus",
    "RefundLedgerEntry",
]
