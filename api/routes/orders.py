"""
Order API routes - admin status path
"""
from fastapi import APIRouter, Depends, Security

from api.dependencies import get_current_admin, get_order_service
from application.dtos.orders import (
    DeliveryDateUpdateDTO,
    ModificationPermissionDTO,
    OrderStatusUpdateDTO,
    OrderSummaryDTO,
)
from application.services.order_service import OrderApplicationService
from core.response import Response as ApiResponse, success_response
from domain.user.entity import User


router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)


@router.put("/{order_ref}/status", summary="Update order status", response_model=ApiResponse[OrderSummaryDTO])
async def update_order_status(
    order_ref: str,
    data: OrderStatusUpdateDTO,
    _admin: User = Security(get_current_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    """Refused with 403 while a cancellation request for the order is pending."""
    order = await service.update_order_status(order_ref, data)
    return success_response(data=order, message="Order status updated")


@router.put("/{order_ref}/delivery-date", summary="Update estimated delivery date", response_model=ApiResponse[OrderSummaryDTO])
async def update_delivery_date(
    order_ref: str,
    data: DeliveryDateUpdateDTO,
    _admin: User = Security(get_current_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.update_delivery_date(order_ref, data)
    return success_response(data=order, message="Delivery date updated")


@router.get(
    "/{order_ref}/modification-permission",
    summary="Whether the order may be modified",
    response_model=ApiResponse[ModificationPermissionDTO],
)
async def check_modification_permission(
    order_ref: str,
    _admin: User = Security(get_current_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    return success_response(data=await service.check_modification_permission(order_ref))
