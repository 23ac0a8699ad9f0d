"""
Cancellation request aggregate - the customer's request and the admin's outcome
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import CancellationConflictException, DomainValidationException
from domain.common.money import ZERO, to_decimal


class CancellationType(str, Enum):
    FULL_ORDER = "FULL_ORDER"
    PARTIAL_ITEMS = "PARTIAL_ITEMS"


class CancellationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RefundStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"


class CancellationAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return _ensure_utc(value)
    return _ensure_utc(datetime.fromisoformat(value))


def generate_cancellation_code() -> str:
    return f"CXL-{uuid.uuid4().hex[:12].upper()}"


@dataclass
class CancellationItem:
    """A targeted line item with the refund estimated at request time."""
    item_id: int
    quantity: int
    item_total: Decimal
    refund_amount: Decimal = ZERO
    name: Optional[str] = None
    pricing_breakdown: Optional[dict] = None

    def __post_init__(self):
        self.item_total = to_decimal(self.item_total, ZERO)
        self.refund_amount = to_decimal(self.refund_amount, ZERO)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "quantity": self.quantity,
            "item_total": str(self.item_total),
            "refund_amount": str(self.refund_amount),
            "name": self.name,
            "pricing_breakdown": self.pricing_breakdown,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CancellationItem":
        return cls(
            item_id=int(data["item_id"]),
            quantity=int(data.get("quantity") or 1),
            item_total=data.get("item_total"),
            refund_amount=data.get("refund_amount"),
            name=data.get("name"),
            pricing_breakdown=data.get("pricing_breakdown"),
        )


@dataclass
class DeliverySnapshot:
    """Delivery facts as they stood when the request was made."""
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    delivery_notes: Optional[str] = None
    delivery_charge: Decimal = ZERO
    was_past_delivery_date: bool = False

    def __post_init__(self):
        self.estimated_delivery_date = _ensure_utc(self.estimated_delivery_date)
        self.actual_delivery_date = _ensure_utc(self.actual_delivery_date)
        self.delivery_charge = to_decimal(self.delivery_charge, ZERO)

    def to_dict(self) -> dict:
        return {
            "estimated_delivery_date": _iso(self.estimated_delivery_date),
            "actual_delivery_date": _iso(self.actual_delivery_date),
            "delivery_notes": self.delivery_notes,
            "delivery_charge": str(self.delivery_charge),
            "was_past_delivery_date": self.was_past_delivery_date,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "DeliverySnapshot":
        data = data or {}
        return cls(
            estimated_delivery_date=_parse_dt(data.get("estimated_delivery_date")),
            actual_delivery_date=_parse_dt(data.get("actual_delivery_date")),
            delivery_notes=data.get("delivery_notes"),
            delivery_charge=data.get("delivery_charge"),
            was_past_delivery_date=bool(data.get("was_past_delivery_date")),
        )


@dataclass
class AdminResponse:
    processed_by: int
    processed_date: datetime
    comments: Optional[str] = None
    refund_amount: Decimal = ZERO
    refund_percentage: Decimal = ZERO

    def to_dict(self) -> dict:
        return {
            "processed_by": self.processed_by,
            "processed_date": _iso(self.processed_date),
            "comments": self.comments,
            "refund_amount": str(self.refund_amount),
            "refund_percentage": str(self.refund_percentage),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["AdminResponse"]:
        if not data:
            return None
        return cls(
            processed_by=int(data["processed_by"]),
            processed_date=_parse_dt(data.get("processed_date")),
            comments=data.get("comments"),
            refund_amount=to_decimal(data.get("refund_amount"), ZERO),
            refund_percentage=to_decimal(data.get("refund_percentage"), ZERO),
        )


@dataclass
class RefundDetails:
    refund_status: RefundStatus = RefundStatus.PROCESSING
    refund_amount: Decimal = ZERO
    refund_id: Optional[str] = None
    refund_date: Optional[datetime] = None
    enhanced_refund_data: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "refund_status": self.refund_status.value,
            "refund_amount": str(self.refund_amount),
            "refund_id": self.refund_id,
            "refund_date": _iso(self.refund_date),
            "enhanced_refund_data": self.enhanced_refund_data,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["RefundDetails"]:
        if not data:
            return None
        return cls(
            refund_status=RefundStatus(data.get("refund_status", RefundStatus.PROCESSING.value)),
            refund_amount=to_decimal(data.get("refund_amount"), ZERO),
            refund_id=data.get("refund_id"),
            refund_date=_parse_dt(data.get("refund_date")),
            enhanced_refund_data=data.get("enhanced_refund_data"),
        )


@dataclass
class CancellationRequest:
    """
    Cancellation request aggregate root

    Business rules:
    1. PENDING moves to APPROVED or REJECTED exactly once
    2. after that only the refund PROCESSING -> COMPLETED step may change it
    3. refund completion happens once; a second attempt is a conflict
    """

    id: Optional[int]
    order_id: int
    user_id: int
    cancellation_type: CancellationType
    reason: str
    items_to_cancel: list[CancellationItem] = field(default_factory=list)
    additional_reason: Optional[str] = None
    status: CancellationStatus = CancellationStatus.PENDING
    cancellation_code: str = field(default_factory=generate_cancellation_code)
    delivery_info: DeliverySnapshot = field(default_factory=DeliverySnapshot)
    pricing_snapshot: Optional[dict] = None
    previous_order_status: Optional[str] = None
    total_refund_amount: Decimal = ZERO
    request_date: Optional[datetime] = None
    admin_response: Optional[AdminResponse] = None
    refund_details: Optional[RefundDetails] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.reason or not self.reason.strip():
            raise DomainValidationException("Cancellation reason is required", field="reason")
        self.total_refund_amount = to_decimal(self.total_refund_amount, ZERO)
        self.request_date = _ensure_utc(self.request_date) or datetime.now(timezone.utc)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def is_pending(self) -> bool:
        return self.status == CancellationStatus.PENDING

    @property
    def is_full_order(self) -> bool:
        return self.cancellation_type == CancellationType.FULL_ORDER

    @property
    def refund_status(self) -> Optional[RefundStatus]:
        return self.refund_details.refund_status if self.refund_details else None

    def item_ids(self) -> list[int]:
        return [item.item_id for item in self.items_to_cancel]

    def ensure_pending(self) -> None:
        if not self.is_pending:
            raise CancellationConflictException(
                "Request has already been processed",
                details={"request_id": self.id, "status": self.status.value},
            )

    def approve(
        self,
        admin_id: int,
        *,
        refund_amount: Decimal,
        refund_percentage: Decimal,
        calculation: dict,
        comments: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.ensure_pending()
        now = _ensure_utc(now) or datetime.now(timezone.utc)
        self.status = CancellationStatus.APPROVED
        self.admin_response = AdminResponse(
            processed_by=admin_id,
            processed_date=now,
            comments=comments,
            refund_amount=refund_amount,
            refund_percentage=refund_percentage,
        )
        self.refund_details = RefundDetails(
            refund_status=RefundStatus.PROCESSING,
            refund_amount=refund_amount,
            enhanced_refund_data=calculation,
        )
        self.updated_at = now

    def reject(self, admin_id: int, *, comments: Optional[str] = None, now: Optional[datetime] = None) -> None:
        self.ensure_pending()
        now = _ensure_utc(now) or datetime.now(timezone.utc)
        self.status = CancellationStatus.REJECTED
        self.admin_response = AdminResponse(
            processed_by=admin_id,
            processed_date=now,
            comments=comments,
        )
        self.updated_at = now

    def complete_refund(self, refund_id: str, *, now: Optional[datetime] = None) -> None:
        if self.status != CancellationStatus.APPROVED or self.refund_details is None:
            raise CancellationConflictException(
                "Only approved requests can be refunded",
                details={"request_id": self.id, "status": self.status.value},
            )
        if self.refund_details.refund_status == RefundStatus.COMPLETED:
            raise CancellationConflictException(
                "Refund has already been completed",
                details={"request_id": self.id, "refund_id": self.refund_details.refund_id},
            )
        now = _ensure_utc(now) or datetime.now(timezone.utc)
        self.refund_details.refund_status = RefundStatus.COMPLETED
        self.refund_details.refund_id = refund_id
        self.refund_details.refund_date = now
        self.updated_at = now
