"""
Cancellation application service - orchestrates the cancellation and refund workflow

Each operation is one unit of work: load, mutate, save, commit. Customer
notifications go out only after the commit.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from application.dtos.cancellation import (
    CancellationRequestCreateDTO,
    CancellationRequestDTO,
    CancellationRequestResultDTO,
    CompleteRefundDTO,
    CompleteRefundResultDTO,
    DeliveryContextDTO,
    DeliveryInsightsDTO,
    PolicyDTO,
    PolicyUpdateDTO,
    ProcessCancellationDTO,
    ProcessCancellationResultDTO,
    RefundEntryDTO,
    RefundStatsDTO,
)
from application.ports.notifier import Notifier
from application.services.notification_service import NotificationService
from core.config import RefundPolicySettings, settings
from core.logging_config import get_logger
from domain.cancellation.entity import (
    CancellationAction,
    CancellationRequest,
    CancellationStatus,
    RefundStatus,
)
from domain.cancellation.policy import (
    CalculationMethod,
    CancellationTiming,
    CustomerInfo,
    RefundPolicy,
    TimingTier,
    days_between,
)
from domain.cancellation.service import CancellationDomainService, ItemSelection, RefundEstimate
from domain.common.exceptions import (
    CancellationRequestNotFoundException,
    OrderNotFoundException,
    UserNotFoundException,
)
from domain.common.money import ZERO, quantize_money
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.user.entity import User


logger = get_logger(__name__)


def default_refund_policy(cfg: Optional[RefundPolicySettings] = None) -> RefundPolicy:
    """Engine defaults from settings, used until an admin stores a policy document."""
    cfg = cfg or settings.refund_policy
    return RefundPolicy(
        legacy_refund_percentage=cfg.legacy_refund_percentage,
        response_time_hours=cfg.response_time_hours,
        timing_tiers=(
            TimingTier(CancellationTiming.EARLY, cfg.early_days, cfg.early_percentage),
            TimingTier(CancellationTiming.STANDARD, cfg.standard_days, cfg.standard_percentage),
            TimingTier(CancellationTiming.LATE, None, cfg.late_percentage),
        ),
        vip_bonus=cfg.vip_bonus,
        loyalty_bonus=cfg.loyalty_bonus,
        loyalty_min_orders=cfg.loyalty_min_orders,
        after_delivery_penalty=cfg.after_delivery_penalty,
        past_estimated_delivery_penalty=cfg.past_estimated_delivery_penalty,
    )


def _customer_info(user: Optional[User]) -> Optional[CustomerInfo]:
    if user is None:
        return None
    return CustomerInfo(
        is_vip=user.is_vip,
        membership_tier=user.membership_tier.value,
        order_count=user.order_count,
    )


def _delivery_context(request: CancellationRequest, order: Optional[Order], now: datetime) -> DeliveryContextDTO:
    """Delivery facts of the order relative to when the cancellation was requested"""
    if order is not None:
        estimated = order.estimated_delivery_date
        actual = order.actual_delivery_date
        order_date = order.order_date
    else:
        estimated = request.delivery_info.estimated_delivery_date
        actual = request.delivery_info.actual_delivery_date
        order_date = None
    return DeliveryContextDTO(
        has_estimated_date=estimated is not None,
        has_actual_delivery_date=actual is not None,
        is_overdue=estimated is not None and actual is None and now > estimated,
        days_between_order_and_cancellation=days_between(order_date, request.request_date),
        days_between_delivery_and_cancellation=(
            days_between(actual, request.request_date) if actual is not None else None
        ),
    )


def _drain_events(domain_service: CancellationDomainService) -> None:
    for event in domain_service.get_domain_events():
        logger.debug("domain_event", event_type=type(event).__name__, event_id=event.event_id)

class CancellationApplicationService:
    """Cancellation application service - customer and admin use cases"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        notifier: Optional[Notifier] = None,
        policy_defaults: Optional[RefundPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._uow_factory = uow_factory
        self._notifications = NotificationService(notifier)
        self._policy_defaults = policy_defaults or default_refund_policy()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock()

    async def _load_policy(self, uow: AbstractUnitOfWork) -> RefundPolicy:
        return await uow.policy_repository.get_active(self._policy_defaults)

    @staticmethod
    async def _resolve(uow: AbstractUnitOfWork, identifier: Union[int, str]) -> CancellationRequest:
        request = await uow.cancellation_repository.resolve(identifier)
        if request is None:
            raise CancellationRequestNotFoundException(str(identifier))
        return request

    @staticmethod
    def _log_fallback(estimate: RefundEstimate, **context) -> None:
        if estimate.calculation.calculation_method == CalculationMethod.LEGACY_FLAT:
            logger.warning(
                "refund_calculation_fallback",
                refund_percentage=str(estimate.refund_percentage),
                **context,
            )

    # ------------------------------------------------------------------
    # Customer
    # ------------------------------------------------------------------
    async def request_cancellation(
        self, user_id: int, data: CancellationRequestCreateDTO
    ) -> CancellationRequestResultDTO:
        now = self._now()
        selections = None
        if data.items_to_cancel:
            selections = [
                ItemSelection(
                    item_id=item.item_id,
                    quantity=item.quantity,
                    refund_amount=item.refund_amount,
                    pricing_breakdown=item.pricing_breakdown,
                )
                for item in data.items_to_cancel
            ]

        async with self._uow_factory() as uow:
            user = await uow.user_repository.get_by_id(user_id)
            if user is None:
                raise UserNotFoundException(str(user_id))
            policy = await self._load_policy(uow)
            domain_service = CancellationDomainService(
                uow.order_repository, uow.cancellation_repository, policy
            )
            request, order, estimate = await domain_service.request_cancellation(
                order_ref=data.order_ref,
                user_id=user_id,
                reason=data.reason,
                additional_reason=data.additional_reason,
                selections=selections,
                pricing_snapshot=data.pricing_snapshot,
                customer=_customer_info(user),
                now=now,
            )
            _drain_events(domain_service)

        self._log_fallback(estimate, order_id=order.id, request_id=request.id)
        logger.info(
            "cancellation_requested",
            request_id=request.id,
            cancellation_code=request.cancellation_code,
            order_id=order.id,
            user_id=user_id,
            cancellation_type=request.cancellation_type.value,
            expected_refund=str(estimate.total),
            pricing_used=estimate.pricing_used,
        )
        self._notifications.cancellation_requested(
            user,
            order,
            request,
            refund_percentage=estimate.refund_percentage,
            response_time_hours=policy.response_time_hours,
        )
        return CancellationRequestResultDTO(
            request_id=request.id,
            cancellation_code=request.cancellation_code,
            status=request.status,
            cancellation_type=request.cancellation_type.value,
            expected_refund=estimate.total,
            refund_percentage=estimate.refund_percentage,
            delivery_refund=estimate.delivery_refund,
            pricing_used=estimate.pricing_used,
            refund_calculation=estimate.breakdown(),
        )

    async def list_user_requests(
        self, user_id: int, skip: int = 0, limit: int = 20
    ) -> tuple[list[CancellationRequestDTO], int]:
        async with self._uow_factory(readonly=True) as uow:
            requests = await uow.cancellation_repository.list_requests(user_id=user_id, skip=skip, limit=limit)
            total = await uow.cancellation_repository.count_requests(user_id=user_id)
            return [CancellationRequestDTO.from_entity(r) for r in requests], int(total)

    async def get_request_for_order(self, user: User, order_ref: Union[int, str]) -> Optional[CancellationRequestDTO]:
        """Latest request for an order; other customers' orders look like missing ones."""
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.resolve(order_ref)
            if order is None or (order.user_id != user.id and not user.is_superuser):
                raise OrderNotFoundException(str(order_ref))
            request = await uow.cancellation_repository.get_latest_for_order(order.id)
            return CancellationRequestDTO.from_entity(request) if request else None

    async def list_user_refunds(self, user_id: int) -> list[RefundEntryDTO]:
        async with self._uow_factory(readonly=True) as uow:
            requests = await uow.cancellation_repository.list_requests(
                user_id=user_id, status=CancellationStatus.APPROVED
            )
            orders = await uow.order_repository.get_many([r.order_id for r in requests])
        now = self._now()
        return [self._refund_entry(r, orders.get(r.order_id), None, now) for r in requests]

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    async def process_cancellation_request(
        self, admin_id: int, data: ProcessCancellationDTO
    ) -> ProcessCancellationResultDTO:
        now = self._now()
        async with self._uow_factory() as uow:
            request = await self._resolve(uow, data.request_id)
            request.ensure_pending()
            policy = await self._load_policy(uow)
            customer = await uow.user_repository.get_by_id(request.user_id)
            domain_service = CancellationDomainService(
                uow.order_repository, uow.cancellation_repository, policy
            )
            estimate = None
            if data.action == CancellationAction.APPROVE:
                request, order, estimate = await domain_service.approve(
                    request,
                    admin_id=admin_id,
                    override_percentage=data.override_percentage,
                    comments=data.comments,
                    customer=_customer_info(customer),
                    now=now,
                )
            else:
                request, order = await domain_service.reject(
                    request, admin_id=admin_id, comments=data.comments, now=now
                )
            _drain_events(domain_service)

        if estimate is not None:
            self._log_fallback(estimate, order_id=order.id, request_id=request.id)
            logger.info(
                "cancellation_approved",
                request_id=request.id,
                order_id=order.id,
                admin_id=admin_id,
                refund_amount=str(estimate.total),
                refund_percentage=str(estimate.refund_percentage),
                order_status=order.order_status.value,
            )
            self._notifications.cancellation_approved(customer, order, request, estimate.breakdown())
            return ProcessCancellationResultDTO(
                request_id=request.id,
                cancellation_code=request.cancellation_code,
                status=request.status,
                order_status=order.order_status.value,
                payment_status=order.payment_status.value,
                refund_amount=estimate.total,
                refund_percentage=estimate.refund_percentage,
                delivery_refund=estimate.delivery_refund,
                refund_calculation=estimate.breakdown(),
            )

        logger.info(
            "cancellation_rejected",
            request_id=request.id,
            order_id=order.id,
            admin_id=admin_id,
            order_status=order.order_status.value,
        )
        self._notifications.cancellation_rejected(customer, order, request)
        return ProcessCancellationResultDTO(
            request_id=request.id,
            cancellation_code=request.cancellation_code,
            status=request.status,
            order_status=order.order_status.value,
            payment_status=order.payment_status.value,
        )

    async def complete_refund(self, admin_id: int, data: CompleteRefundDTO) -> CompleteRefundResultDTO:
        now = self._now()
        async with self._uow_factory() as uow:
            request = await self._resolve(uow, data.request_id)
            customer = await uow.user_repository.get_by_id(request.user_id)
            domain_service = CancellationDomainService(
                uow.order_repository, uow.cancellation_repository, self._policy_defaults
            )
            request, order = await domain_service.complete_refund(
                request, transaction_ref=data.transaction_ref, now=now
            )
            _drain_events(domain_service)

        details = request.refund_details
        logger.info(
            "refund_completed",
            request_id=request.id,
            order_id=order.id,
            admin_id=admin_id,
            refund_id=details.refund_id,
            refund_amount=str(details.refund_amount),
            comments=data.comments,
        )
        self._notifications.refund_invoice(customer, order, request)
        return CompleteRefundResultDTO(
            request_id=request.id,
            order_id=order.id,
            refund_id=details.refund_id,
            refund_date=details.refund_date,
            refund_amount=details.refund_amount,
            payment_status=order.payment_status.value,
        )

    async def get_request(
        self, identifier: Union[int, str], user: Optional[User] = None
    ) -> CancellationRequestDTO:
        """Request by id or code; customers only see their own requests."""
        async with self._uow_factory(readonly=True) as uow:
            request = await self._resolve(uow, identifier)
        if user is not None and not user.is_superuser and request.user_id != user.id:
            raise CancellationRequestNotFoundException(str(identifier))
        return CancellationRequestDTO.from_entity(request)

    async def list_requests(
        self,
        skip: int = 0,
        limit: int = 20,
        status: Optional[CancellationStatus] = None,
    ) -> tuple[list[CancellationRequestDTO], int]:
        async with self._uow_factory(readonly=True) as uow:
            requests = await uow.cancellation_repository.list_requests(status=status, skip=skip, limit=limit)
            total = await uow.cancellation_repository.count_requests(status=status)
            return [CancellationRequestDTO.from_entity(r) for r in requests], int(total)

    async def list_refunds(
        self,
        skip: int = 0,
        limit: int = 20,
        refund_status: Optional[RefundStatus] = None,
    ) -> tuple[list[RefundEntryDTO], int]:
        """Approved requests with their delivery context, newest first"""
        async with self._uow_factory(readonly=True) as uow:
            repo = uow.cancellation_repository
            requests = await repo.list_requests(
                status=CancellationStatus.APPROVED, refund_status=refund_status, skip=skip, limit=limit
            )
            total = await repo.count_requests(status=CancellationStatus.APPROVED, refund_status=refund_status)
            orders = await uow.order_repository.get_many([r.order_id for r in requests])
            users = await uow.user_repository.get_many([r.user_id for r in requests])
        now = self._now()
        items = [
            self._refund_entry(r, orders.get(r.order_id), users.get(r.user_id), now)
            for r in requests
        ]
        return items, int(total)

    async def refund_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> RefundStatsDTO:
        """Refund statistics split by where the order was in its delivery when cancelled."""
        async with self._uow_factory(readonly=True) as uow:
            requests = await uow.cancellation_repository.list_requests(created_from=start, created_to=end)
            orders = await uow.order_repository.get_many([r.order_id for r in requests])
        now = self._now()

        insights = DeliveryInsightsDTO(
            by_delivery_status={"no_delivery_date": 0, "pending_delivery": 0, "delivered": 0, "overdue": 0},
        )
        amounts = {"before_delivery": ZERO, "after_delivery": ZERO, "overdue_delivery": ZERO}
        by_refund_status: dict[str, int] = {}
        total_amount = ZERO
        total_days = 0
        counted = 0

        for request in requests:
            refund_amount = request.refund_details.refund_amount if request.refund_details else ZERO
            total_amount += refund_amount
            status_key = request.refund_status.value if request.refund_status else "NONE"
            by_refund_status[status_key] = by_refund_status.get(status_key, 0) + 1

            order = orders.get(request.order_id)
            if order is None:
                continue
            total_days += days_between(order.order_date, request.request_date)
            counted += 1

            if order.estimated_delivery_date is None:
                insights.by_delivery_status["no_delivery_date"] += 1
            elif order.actual_delivery_date is not None:
                insights.by_delivery_status["delivered"] += 1
                insights.cancelled_after_delivery += 1
                amounts["after_delivery"] += refund_amount
            elif now > order.estimated_delivery_date:
                insights.by_delivery_status["overdue"] += 1
                insights.cancelled_with_overdue_delivery += 1
                amounts["overdue_delivery"] += refund_amount
            else:
                insights.by_delivery_status["pending_delivery"] += 1
                insights.cancelled_before_delivery += 1
                amounts["before_delivery"] += refund_amount

        if counted:
            insights.average_days_before_cancellation = round(total_days / counted)

        return RefundStatsDTO(
            total_refunds=len(requests),
            total_refund_amount=quantize_money(total_amount),
            by_refund_status=by_refund_status,
            delivery_insights=insights,
            refund_amounts_by_delivery_status={k: quantize_money(v) for k, v in amounts.items()},
        )

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------
    async def get_policy(self) -> PolicyDTO:
        async with self._uow_factory(readonly=True) as uow:
            policy = await self._load_policy(uow)
        return PolicyDTO(document=policy.to_document(), updated_by=policy.updated_by, updated_at=policy.updated_at)

    async def update_policy(self, admin_id: int, data: PolicyUpdateDTO) -> PolicyDTO:
        now = self._now()
        async with self._uow_factory() as uow:
            current = await self._load_policy(uow)
            policy = RefundPolicy.from_document(data.to_document(), base=current)
            policy = replace(policy, updated_by=admin_id, updated_at=now)
            policy = await uow.policy_repository.save(policy)
        logger.info("cancellation_policy_updated", admin_id=admin_id, fields=sorted(data.model_fields_set))
        return PolicyDTO(document=policy.to_document(), updated_by=policy.updated_by, updated_at=policy.updated_at)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _refund_entry(
        request: CancellationRequest,
        order: Optional[Order],
        user: Optional[User],
        now: datetime,
    ) -> RefundEntryDTO:
        return RefundEntryDTO.from_entity(
            request,
            order_code=order.order_code if order else None,
            customer_email=user.email if user else None,
            delivery_context=_delivery_context(request, order, now),
        )


__all__ = ["CancellationApplicationService", "default_refund_policy"]
