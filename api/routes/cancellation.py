"""
Cancellation and refund API routes
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Security, status

from api.dependencies import (
    get_cancellation_service,
    get_current_admin,
    get_current_user,
)
from application.dto import PaginationParams
from application.dtos.cancellation import (
    CancellationRequestCreateDTO,
    CancellationRequestDTO,
    CancellationRequestResultDTO,
    CompleteRefundDTO,
    CompleteRefundResultDTO,
    PolicyDTO,
    PolicyUpdateDTO,
    ProcessCancellationDTO,
    ProcessCancellationResultDTO,
    RefundEntryDTO,
    RefundStatsDTO,
)
from application.services.cancellation_service import CancellationApplicationService
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.cancellation.entity import CancellationStatus, RefundStatus
from domain.user.entity import User


router = APIRouter(
    prefix="/cancellation",
    tags=["Cancellation"]
)


@router.post(
    "/request",
    summary="Request an order cancellation",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[CancellationRequestResultDTO],
)
async def request_cancellation(
    data: CancellationRequestCreateDTO,
    current_user: User = Depends(get_current_user),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    """
    Submit a cancellation request for one of your orders

    - **order_ref**: order id or order code
    - **reason**: why the order is cancelled
    - **items_to_cancel**: items to cancel; omit to cancel the whole order
    - **pricing_snapshot**: prices shown to the customer, used for the refund estimate
    """
    result = await service.request_cancellation(current_user.id, data)
    return success_response(data=result, message="Cancellation request submitted")


@router.post("/process", summary="Approve or reject a request", response_model=ApiResponse[ProcessCancellationResultDTO])
async def process_cancellation(
    data: ProcessCancellationDTO,
    admin: User = Security(get_current_admin),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    result = await service.process_cancellation_request(admin.id, data)
    return success_response(data=result, message=f"Cancellation request {result.status.value.lower()}")


@router.post("/complete-refund", summary="Record a completed refund", response_model=ApiResponse[CompleteRefundResultDTO])
async def complete_refund(
    data: CompleteRefundDTO,
    admin: User = Security(get_current_admin),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    result = await service.complete_refund(admin.id, data)
    return success_response(data=result, message="Refund completed")


@router.get("/policy", summary="Current cancellation policy", response_model=ApiResponse[PolicyDTO])
async def get_policy(service: CancellationApplicationService = Depends(get_cancellation_service)):
    return success_response(data=await service.get_policy())


@router.put("/policy", summary="Update the cancellation policy", response_model=ApiResponse[PolicyDTO])
async def update_policy(
    data: PolicyUpdateDTO,
    admin: User = Security(get_current_admin),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    """Fields left out keep their current value."""
    policy = await service.update_policy(admin.id, data)
    return success_response(data=policy, message="Cancellation policy updated")


@router.get("/my-requests", summary="My cancellation requests", response_model=ApiResponse[PaginatedData[CancellationRequestDTO]])
async def list_my_requests(
    params: PaginationParams = Depends(),
    current_user: User = Depends(get_current_user),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    items, total = await service.list_user_requests(current_user.id, skip=params.skip, limit=params.limit)
    return paginated_response(items=items, total=total, page=params.page, size=params.size)


@router.get("/requests", summary="All cancellation requests", response_model=ApiResponse[PaginatedData[CancellationRequestDTO]])
async def list_requests(
    params: PaginationParams = Depends(),
    request_status: Optional[CancellationStatus] = Query(None, alias="status", description="Filter by status"),
    _admin: User = Security(get_current_admin),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    items, total = await service.list_requests(skip=params.skip, limit=params.limit, status=request_status)
    return paginated_response(items=items, total=total, page=params.page, size=params.size)


@router.get("/refunds", summary="Approved refunds", response_model=ApiResponse[PaginatedData[RefundEntryDTO]])
async def list_refunds(
    params: PaginationParams = Depends(),
    refund_status: Optional[RefundStatus] = Query(None, description="Filter by refund status"),
    _admin: User = Security(get_current_admin),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    items, total = await service.list_refunds(skip=params.skip, limit=params.limit, refund_status=refund_status)
    return paginated_response(items=items, total=total, page=params.page, size=params.size)


@router.get("/refunds/stats", summary="Refund statistics", response_model=ApiResponse[RefundStatsDTO])
async def refund_stats(
    start_date: Optional[datetime] = Query(None, description="Requests created at or after"),
    end_date: Optional[datetime] = Query(None, description="Requests created at or before"),
    _admin: User = Security(get_current_admin),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    stats = await service.refund_stats(start_date, end_date)
    return success_response(data=stats)


@router.get("/my-refunds", summary="My refunds", response_model=ApiResponse[list[RefundEntryDTO]])
async def list_my_refunds(
    current_user: User = Depends(get_current_user),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    return success_response(data=await service.list_user_refunds(current_user.id))


@router.get(
    "/order/{order_ref}",
    summary="Latest cancellation request for an order",
    response_model=ApiResponse[Optional[CancellationRequestDTO]],
)
async def get_request_for_order(
    order_ref: str,
    current_user: User = Depends(get_current_user),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    request = await service.get_request_for_order(current_user, order_ref)
    message = "Success" if request else "No cancellation request for this order"
    return success_response(data=request, message=message)


# catch-all lookup, keep it after the static paths
@router.get("/{identifier}", summary="Cancellation request by id or code", response_model=ApiResponse[CancellationRequestDTO])
async def get_request(
    identifier: str,
    current_user: User = Depends(get_current_user),
    service: CancellationApplicationService = Depends(get_cancellation_service),
):
    return success_response(data=await service.get_request(identifier, current_user))
