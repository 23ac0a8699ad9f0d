"""Cancellation and refund DTOs.

Client field-name variants are accepted here and nowhere else, so the
services only ever see the canonical names.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import AliasChoices, Field, field_validator

from application.dto import DTOBase
from domain.cancellation.entity import (
    CancellationAction,
    CancellationRequest,
    CancellationStatus,
    RefundStatus,
)
from domain.cancellation.policy import CancellationTiming


_ACTION_ALIASES = {
    "APPROVE": CancellationAction.APPROVE,
    "APPROVED": CancellationAction.APPROVE,
    "REJECT": CancellationAction.REJECT,
    "REJECTED": CancellationAction.REJECT,
}


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
class CancellationItemInputDTO(DTOBase):
    item_id: int = Field(validation_alias=AliasChoices("item_id", "itemId", "_id", "id"))
    quantity: Optional[int] = Field(default=None, ge=1)
    refund_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("refund_amount", "refundAmount"),
    )
    pricing_breakdown: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("pricing_breakdown", "pricingBreakdown"),
    )


class CancellationRequestCreateDTO(DTOBase):
    order_ref: Union[int, str] = Field(
        validation_alias=AliasChoices("order_ref", "orderId", "order_id", "orderRef"),
        description="Order id or order code",
    )
    reason: str = Field(..., min_length=1, max_length=500)
    additional_reason: Optional[str] = Field(
        default=None,
        max_length=1000,
        validation_alias=AliasChoices("additional_reason", "additionalReason", "customReason", "custom_reason"),
    )
    items_to_cancel: Optional[list[CancellationItemInputDTO]] = Field(
        default=None,
        validation_alias=AliasChoices("items_to_cancel", "itemsToCancel"),
        description="Omit for a full-order cancellation",
    )
    pricing_snapshot: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("pricing_snapshot", "pricingSnapshot", "pricingInformation"),
    )

    @field_validator("order_ref")
    @classmethod
    def _normalize_order_ref(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("order reference must not be empty")
        return v

    @field_validator("reason")
    @classmethod
    def _strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason must not be blank")
        return v

    @field_validator("additional_reason", mode="before")
    @classmethod
    def _strip_additional(cls, v):
        return _blank_to_none(v)


class ProcessCancellationDTO(DTOBase):
    request_id: Union[int, str] = Field(
        validation_alias=AliasChoices("request_id", "requestId", "cancellationId", "cancellation_id"),
        description="Request id or cancellation code",
    )
    action: CancellationAction
    comments: Optional[str] = Field(
        default=None,
        max_length=1000,
        validation_alias=AliasChoices("comments", "adminComments", "admin_comments"),
    )
    override_percentage: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        validation_alias=AliasChoices("override_percentage", "refundPercentage", "refund_percentage"),
    )

    @field_validator("action", mode="before")
    @classmethod
    def _normalize_action(cls, v):
        if isinstance(v, CancellationAction):
            return v
        key = str(v).strip().upper() if v is not None else ""
        if key not in _ACTION_ALIASES:
            raise ValueError("action must be APPROVE or REJECT")
        return _ACTION_ALIASES[key]

    @field_validator("comments", mode="before")
    @classmethod
    def _strip_comments(cls, v):
        return _blank_to_none(v)


class CompleteRefundDTO(DTOBase):
    request_id: Union[int, str] = Field(
        validation_alias=AliasChoices("request_id", "requestId", "cancellationId", "cancellation_id"),
    )
    transaction_ref: Optional[str] = Field(
        default=None,
        max_length=200,
        validation_alias=AliasChoices("transaction_ref", "transactionId", "transaction_id", "refundId"),
    )
    comments: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("transaction_ref", "comments", mode="before")
    @classmethod
    def _strip_optional(cls, v):
        return _blank_to_none(v)


class TimingRuleDTO(DTOBase):
    timing: CancellationTiming
    max_days: Optional[int] = Field(default=None, ge=0)
    refund_percentage: Decimal = Field(ge=0, le=100)


class BonusesDTO(DTOBase):
    vip_bonus: Optional[Decimal] = Field(default=None, ge=0, le=100)
    loyalty_bonus: Optional[Decimal] = Field(default=None, ge=0, le=100)
    loyalty_min_orders: Optional[int] = Field(default=None, ge=0)


class PenaltiesDTO(DTOBase):
    after_delivery_penalty: Optional[Decimal] = Field(default=None, ge=0, le=100)
    past_estimated_delivery_penalty: Optional[Decimal] = Field(default=None, ge=0, le=100)


class OrderStatusRuleDTO(DTOBase):
    order_status: str
    can_cancel: bool = True
    refund_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class PolicyTermDTO(DTOBase):
    title: str
    content: str


class PolicyUpdateDTO(DTOBase):
    """Partial policy document; omitted fields keep their current value."""
    refund_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    legacy_refund_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    response_time_hours: Optional[int] = Field(default=None, ge=1)
    time_based_rules: Optional[list[TimingRuleDTO]] = None
    bonuses: Optional[BonusesDTO] = None
    penalties: Optional[PenaltiesDTO] = None
    allowed_reasons: Optional[list[str]] = None
    order_status_rules: Optional[list[OrderStatusRuleDTO]] = None
    terms: Optional[list[PolicyTermDTO]] = None
    non_cancellable_statuses: Optional[list[str]] = None
    allowed_payment_statuses: Optional[list[str]] = None
    online_payment_markers: Optional[list[str]] = None

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RefundStatsQueryDTO(DTOBase):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class CancellationRequestResultDTO(DTOBase):
    request_id: int
    cancellation_code: str
    status: CancellationStatus
    cancellation_type: str
    expected_refund: Decimal
    refund_percentage: Decimal
    delivery_refund: Decimal
    pricing_used: str
    refund_calculation: dict[str, Any]


class CancellationRequestDTO(DTOBase):
    id: int
    cancellation_code: str
    order_id: int
    user_id: int
    cancellation_type: str
    status: CancellationStatus
    reason: str
    additional_reason: Optional[str] = None
    items_to_cancel: list[dict[str, Any]] = Field(default_factory=list)
    delivery_info: dict[str, Any] = Field(default_factory=dict)
    pricing_snapshot: Optional[dict[str, Any]] = None
    previous_order_status: Optional[str] = None
    total_refund_amount: Decimal
    request_date: datetime
    admin_response: Optional[dict[str, Any]] = None
    refund_details: Optional[dict[str, Any]] = None
    refund_status: Optional[RefundStatus] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, request: CancellationRequest, **extra: Any) -> "CancellationRequestDTO":
        return cls(
            id=request.id,
            cancellation_code=request.cancellation_code,
            order_id=request.order_id,
            user_id=request.user_id,
            cancellation_type=request.cancellation_type.value,
            status=request.status,
            reason=request.reason,
            additional_reason=request.additional_reason,
            items_to_cancel=[item.to_dict() for item in request.items_to_cancel],
            delivery_info=request.delivery_info.to_dict(),
            pricing_snapshot=request.pricing_snapshot,
            previous_order_status=request.previous_order_status,
            total_refund_amount=request.total_refund_amount,
            request_date=request.request_date,
            admin_response=request.admin_response.to_dict() if request.admin_response else None,
            refund_details=request.refund_details.to_dict() if request.refund_details else None,
            refund_status=request.refund_status,
            created_at=request.created_at,
            updated_at=request.updated_at,
            **extra,
        )


class ProcessCancellationResultDTO(DTOBase):
    request_id: int
    cancellation_code: str
    status: CancellationStatus
    order_status: str
    payment_status: str
    refund_amount: Decimal = Decimal("0")
    refund_percentage: Decimal = Decimal("0")
    delivery_refund: Decimal = Decimal("0")
    refund_calculation: Optional[dict[str, Any]] = None


class CompleteRefundResultDTO(DTOBase):
    request_id: int
    order_id: int
    refund_id: str
    refund_date: datetime
    refund_amount: Decimal
    payment_status: str


class DeliveryContextDTO(DTOBase):
    has_estimated_date: bool
    has_actual_delivery_date: bool
    is_overdue: bool
    days_between_order_and_cancellation: int
    days_between_delivery_and_cancellation: Optional[int] = None


class RefundEntryDTO(CancellationRequestDTO):
    order_code: Optional[str] = None
    customer_email: Optional[str] = None
    delivery_context: DeliveryContextDTO


class DeliveryInsightsDTO(DTOBase):
    cancelled_before_delivery: int = 0
    cancelled_after_delivery: int = 0
    cancelled_with_overdue_delivery: int = 0
    average_days_before_cancellation: int = 0
    by_delivery_status: dict[str, int] = Field(default_factory=dict)


class RefundStatsDTO(DTOBase):
    total_refunds: int
    total_refund_amount: Decimal
    by_refund_status: dict[str, int] = Field(default_factory=dict)
    delivery_insights: DeliveryInsightsDTO
    refund_amounts_by_delivery_status: dict[str, Decimal] = Field(default_factory=dict)


class PolicyDTO(DTOBase):
    document: dict[str, Any]
    updated_by: Optional[int] = None
    updated_at: Optional[datetime] = None
