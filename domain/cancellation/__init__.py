from .entity import (
    AdminResponse,
    CancellationAction,
    CancellationItem,
    CancellationRequest,
    CancellationStatus,
    CancellationType,
    DeliverySnapshot,
    RefundDetails,
    RefundStatus,
)
from .policy import (
    CancellationContext,
    CancellationTiming,
    CustomerInfo,
    OrderFinancials,
    RefundCalculationResult,
    RefundPolicy,
    calculate_refund,
    legacy_refund,
)

__all__ = [
    "AdminResponse",
    "CancellationAction",
    "CancellationContext",
    "CancellationItem",
    "CancellationRequest",
    "CancellationStatus",
    "CancellationTiming",
    "CancellationType",
    "CustomerInfo",
    "DeliverySnapshot",
    "OrderFinancials",
    "RefundCalculationResult",
    "RefundDetails",
    "RefundPolicy",
    "RefundStatus",
    "calculate_refund",
    "legacy_refund",
]
