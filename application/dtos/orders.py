"""Order status path DTOs."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, Field

from application.dto import DTOBase
from domain.order.entity import OrderStatus


class OrderStatusUpdateDTO(DTOBase):
    status: OrderStatus = Field(validation_alias=AliasChoices("status", "orderStatus", "order_status"))


class DeliveryDateUpdateDTO(DTOBase):
    estimated_delivery_date: datetime = Field(
        validation_alias=AliasChoices("estimated_delivery_date", "estimatedDeliveryDate"),
    )
    delivery_notes: Optional[str] = Field(
        default=None,
        max_length=500,
        validation_alias=AliasChoices("delivery_notes", "deliveryNotes"),
    )


class ModificationPermissionDTO(DTOBase):
    order_id: int
    order_code: str
    can_modify: bool
    reason: Optional[str] = None
    pending_request_id: Optional[int] = None


class OrderSummaryDTO(DTOBase):
    id: int
    order_code: str
    order_status: str
    payment_status: str
    total_amt: Decimal
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    delivery_notes: Optional[str] = None
