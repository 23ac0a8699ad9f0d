"""
Order application service - the admin status path, guarded against pending cancellations
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional, Union

from application.dtos.orders import (
    DeliveryDateUpdateDTO,
    ModificationPermissionDTO,
    OrderStatusUpdateDTO,
    OrderSummaryDTO,
)
from core.logging_config import get_logger
from domain.common.exceptions import OrderNotFoundException, OrderUnderReviewException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order


logger = get_logger(__name__)


def _summary(order: Order) -> OrderSummaryDTO:
    return OrderSummaryDTO(
        id=order.id,
        order_code=order.order_code,
        order_status=order.order_status.value,
        payment_status=order.payment_status.value,
        total_amt=order.total_amt,
        estimated_delivery_date=order.estimated_delivery_date,
        actual_delivery_date=order.actual_delivery_date,
        delivery_notes=order.delivery_notes,
    )


class OrderApplicationService:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._uow_factory = uow_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _lock_modifiable(self, uow: AbstractUnitOfWork, order_ref: Union[int, str]) -> Order:
        order = await uow.order_repository.get_for_update(order_ref)
        if order is None:
            raise OrderNotFoundException(str(order_ref))
        pending = await uow.cancellation_repository.get_pending_for_order(order.id)
        if pending is not None:
            logger.warning("order_modification_blocked", order_id=order.id, request_id=pending.id)
            raise OrderUnderReviewException(order.id)
        return order

    async def check_modification_permission(self, order_ref: Union[int, str]) -> ModificationPermissionDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.resolve(order_ref)
            if order is None:
                raise OrderNotFoundException(str(order_ref))
            pending = await uow.cancellation_repository.get_pending_for_order(order.id)
        if pending is not None:
            return ModificationPermissionDTO(
                order_id=order.id,
                order_code=order.order_code,
                can_modify=False,
                reason="A cancellation request for this order is pending review",
                pending_request_id=pending.id,
            )
        return ModificationPermissionDTO(order_id=order.id, order_code=order.order_code, can_modify=True)

    async def update_order_status(self, order_ref: Union[int, str], data: OrderStatusUpdateDTO) -> OrderSummaryDTO:
        async with self._uow_factory() as uow:
            order = await self._lock_modifiable(uow, order_ref)
            previous = order.order_status
            order.update_status(data.status, now=self._clock())
            order = await uow.order_repository.update(order)
        logger.info(
            "order_status_changed",
            order_id=order.id,
            previous_status=previous.value,
            order_status=order.order_status.value,
        )
        return _summary(order)

    async def update_delivery_date(self, order_ref: Union[int, str], data: DeliveryDateUpdateDTO) -> OrderSummaryDTO:
        async with self._uow_factory() as uow:
            order = await self._lock_modifiable(uow, order_ref)
            order.update_delivery_date(data.estimated_delivery_date, data.delivery_notes)
            order = await uow.order_repository.update(order)
        logger.info(
            "order_delivery_date_changed",
            order_id=order.id,
            estimated_delivery_date=order.estimated_delivery_date.isoformat(),
        )
        return _summary(order)
