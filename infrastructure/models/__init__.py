"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .order import OrderModel, OrderItemModel, RefundLedgerModel
from .cancellation import CancellationRequestModel, CancellationPolicyModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "OrderModel",
    "OrderItemModel",
    "RefundLedgerModel",
    "CancellationRequestModel",
    "CancellationPolicyModel",
]
