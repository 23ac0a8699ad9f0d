"""
Cancellation domain service - eligibility, refund estimation and the approval flow
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from domain.common.exceptions import (
    CancellationIneligibleException,
    CancellationRequestNotFoundException,
    CancellationValidationException,
    OrderNotFoundException,
    PendingCancellationExistsException,
    RefundCalculationError,
)
from domain.common.money import ZERO, percent_of, quantize_money, to_decimal
from domain.order.entity import Order, OrderItem, OrderStatus
from domain.order.repository import OrderRepository

from .entity import (
    CancellationItem,
    CancellationRequest,
    CancellationType,
    DeliverySnapshot,
)
from .events import (
    CancellationApproved,
    CancellationRejected,
    CancellationRequested,
    RefundCompleted,
)
from .policy import (
    CancellationContext,
    CustomerInfo,
    RefundCalculationResult,
    RefundPolicy,
    calculate_refund,
    financials_for_order,
    legacy_refund,
)
from .repository import CancellationRequestRepository


@dataclass
class ItemSelection:
    """An item the customer wants cancelled, with optional client pricing."""
    item_id: int
    quantity: Optional[int] = None
    refund_amount: Any = None
    pricing_breakdown: Optional[dict] = None


@dataclass
class RefundEstimate:
    calculation: RefundCalculationResult
    item_refunds: dict[int, Decimal] = field(default_factory=dict)
    delivery_refund: Decimal = ZERO
    pricing_used: str = "SERVER"

    @property
    def total(self) -> Decimal:
        return quantize_money(sum(self.item_refunds.values(), ZERO) + self.delivery_refund)

    @property
    def refund_percentage(self) -> Decimal:
        return self.calculation.refund_percentage

    def breakdown(self) -> dict:
        data = self.calculation.to_dict()
        data["item_refunds"] = {str(k): str(v) for k, v in self.item_refunds.items()}
        data["delivery_refund"] = str(self.delivery_refund)
        data["total_refund"] = str(self.total)
        data["pricing_used"] = self.pricing_used
        return data


def _prorated_bases(targets: list[OrderItem], customer_paid: Optional[Decimal]) -> dict[int, Decimal]:
    """
    Refundable base per item.

    A customer-paid amount is spread over the targets in proportion to their
    list totals; the last item takes the rounding remainder.
    """
    bases = {item.id: item.item_total for item in targets}
    list_total = sum(bases.values(), ZERO)
    if customer_paid is None or customer_paid < 0 or list_total <= 0:
        return bases
    paid = min(customer_paid, list_total)
    remaining = paid
    for index, item in enumerate(targets):
        if index == len(targets) - 1:
            bases[item.id] = quantize_money(remaining)
        else:
            share = quantize_money(item.item_total * paid / list_total)
            bases[item.id] = share
            remaining -= share
    return bases


class CancellationDomainService:
    """Orchestrates one cancellation operation against already-open repositories"""

    def __init__(
        self,
        order_repository: OrderRepository,
        cancellation_repository: CancellationRequestRepository,
        policy: RefundPolicy,
    ):
        self.order_repository = order_repository
        self.cancellation_repository = cancellation_repository
        self.policy = policy
        self.events: list = []

    # ------------------------------------------------------------------
    # Refund calculation
    # ------------------------------------------------------------------
    def _run_engine(
        self,
        order: Order,
        items_total: Decimal,
        *,
        include_delivery: bool,
        context: CancellationContext,
        customer: Optional[CustomerInfo],
        override_percentage: Any = None,
        customer_paid: Any = None,
    ) -> RefundCalculationResult:
        financials = financials_for_order(
            items_total,
            order.delivery_charge,
            include_delivery=include_delivery,
            order_date=order.order_date,
            customer_paid=customer_paid,
        )
        try:
            return calculate_refund(financials, context, self.policy, override_percentage, customer)
        except RefundCalculationError:
            return legacy_refund(
                financials.total_amt,
                self.policy.legacy_refund_percentage,
                order_date=order.order_date,
                request_date=context.request_date,
            )

    def estimate_refund(
        self,
        order: Order,
        targets: list[OrderItem],
        *,
        context: CancellationContext,
        customer: Optional[CustomerInfo] = None,
        client_amounts: Optional[dict[int, Any]] = None,
        customer_paid: Any = None,
        override_percentage: Any = None,
    ) -> RefundEstimate:
        """
        Refund for cancelling ``targets`` now.

        The delivery charge is refunded only when the targets are every
        currently active item of the order.
        """
        active_ids = {item.id for item in order.active_items()}
        target_ids = {item.id for item in targets}
        include_delivery = bool(target_ids) and target_ids == active_ids

        paid = to_decimal(customer_paid)
        bases = _prorated_bases(targets, paid)
        calculation = self._run_engine(
            order,
            sum((item.item_total for item in targets), ZERO),
            include_delivery=include_delivery,
            context=context,
            customer=customer,
            override_percentage=override_percentage,
            customer_paid=sum(bases.values(), ZERO) if paid is not None else None,
        )
        pct = calculation.refund_percentage

        client_amounts = client_amounts or {}
        item_refunds: dict[int, Decimal] = {}
        used_client_pricing = paid is not None
        for item in targets:
            client_amount = to_decimal(client_amounts.get(item.id))
            if client_amount is not None:
                if client_amount < 0 or client_amount > item.item_total:
                    raise CancellationValidationException(
                        f"Refund amount for item {item.id} must be between 0 and {item.item_total}",
                        field="items_to_cancel",
                        details={"item_id": item.id, "refund_amount": str(client_amount)},
                    )
                item_refunds[item.id] = quantize_money(client_amount)
                used_client_pricing = True
            else:
                item_refunds[item.id] = percent_of(bases[item.id], pct)

        delivery_refund = ZERO
        if include_delivery and order.delivery_charge > 0:
            delivery_refund = percent_of(order.delivery_charge, pct)

        return RefundEstimate(
            calculation=calculation,
            item_refunds=item_refunds,
            delivery_refund=delivery_refund,
            pricing_used="CLIENT_SNAPSHOT" if used_client_pricing else "SERVER",
        )

    # ------------------------------------------------------------------
    # Workflow steps
    # ------------------------------------------------------------------
    def _check_eligibility(self, order: Order) -> None:
        if order.order_status.value in self.policy.non_cancellable_statuses:
            raise CancellationIneligibleException(
                f"Orders in status {order.order_status.value} cannot be cancelled",
                details={"order_status": order.order_status.value},
            )
        if not order.is_online_payment(self.policy.online_payment_markers):
            raise CancellationIneligibleException(
                "Only orders paid online can be cancelled for a refund",
                details={"payment_method": order.payment_method},
            )
        if order.payment_status.value not in self.policy.allowed_payment_statuses:
            raise CancellationIneligibleException(
                f"Orders with payment status {order.payment_status.value} cannot be cancelled",
                details={"payment_status": order.payment_status.value},
            )

    @staticmethod
    def _select_targets(order: Order, selections: Optional[list[ItemSelection]]) -> list[OrderItem]:
        if not selections:
            return order.active_items()
        seen: set[int] = set()
        targets: list[OrderItem] = []
        for selection in selections:
            if selection.item_id in seen:
                raise CancellationValidationException(
                    f"Item {selection.item_id} is listed more than once",
                    field="items_to_cancel",
                )
            seen.add(selection.item_id)
            item = order.find_item(selection.item_id)
            if item is None:
                raise CancellationValidationException(
                    f"Item {selection.item_id} does not belong to order {order.order_code}",
                    field="items_to_cancel",
                )
            if selection.quantity is not None and selection.quantity != item.quantity:
                raise CancellationValidationException(
                    "Line items can only be cancelled as a whole",
                    field="items_to_cancel",
                    details={"item_id": item.id, "quantity": item.quantity},
                )
            if item.is_active:
                targets.append(item)
        return targets

    async def request_cancellation(
        self,
        *,
        order_ref: Union[int, str],
        user_id: int,
        reason: str,
        additional_reason: Optional[str] = None,
        selections: Optional[list[ItemSelection]] = None,
        pricing_snapshot: Optional[dict] = None,
        customer: Optional[CustomerInfo] = None,
        now: Optional[datetime] = None,
    ) -> tuple[CancellationRequest, Order, RefundEstimate]:
        now = now or datetime.now(timezone.utc)
        order = await self.order_repository.get_for_update(order_ref)
        if order is None or order.user_id != user_id:
            raise OrderNotFoundException(str(order_ref))

        self._check_eligibility(order)
        if await self.cancellation_repository.get_pending_for_order(order.id) is not None:
            raise PendingCancellationExistsException(order.id)

        targets = self._select_targets(order, selections)
        if not targets:
            raise CancellationIneligibleException(
                "None of the selected items can still be cancelled",
                details={"order_id": order.id},
            )

        delivery = DeliverySnapshot(
            estimated_delivery_date=order.estimated_delivery_date,
            actual_delivery_date=order.actual_delivery_date,
            delivery_notes=order.delivery_notes,
            delivery_charge=order.delivery_charge,
            was_past_delivery_date=order.was_past_delivery_date(now),
        )
        by_id = {s.item_id: s for s in selections or []}
        estimate = self.estimate_refund(
            order,
            targets,
            context=CancellationContext(
                request_date=now,
                estimated_delivery_date=delivery.estimated_delivery_date,
                actual_delivery_date=delivery.actual_delivery_date,
                was_past_delivery_date=delivery.was_past_delivery_date,
            ),
            customer=customer,
            client_amounts={k: v.refund_amount for k, v in by_id.items() if v.refund_amount is not None},
            customer_paid=(pricing_snapshot or {}).get("customer_paid"),
        )

        cancellation_type = CancellationType.PARTIAL_ITEMS if selections else CancellationType.FULL_ORDER
        request = CancellationRequest(
            id=None,
            order_id=order.id,
            user_id=user_id,
            cancellation_type=cancellation_type,
            reason=reason,
            additional_reason=additional_reason,
            items_to_cancel=[
                CancellationItem(
                    item_id=item.id,
                    quantity=item.quantity,
                    item_total=item.item_total,
                    refund_amount=estimate.item_refunds[item.id],
                    name=item.name,
                    pricing_breakdown=by_id[item.id].pricing_breakdown if item.id in by_id else None,
                )
                for item in targets
            ],
            delivery_info=delivery,
            pricing_snapshot=pricing_snapshot,
            total_refund_amount=estimate.total,
            request_date=now,
            created_at=now,
            updated_at=now,
        )
        if cancellation_type == CancellationType.FULL_ORDER:
            request.previous_order_status = order.hold_for_cancellation().value
            order = await self.order_repository.update(order)

        request = await self.cancellation_repository.create(request)
        self.events.append(CancellationRequested(
            request_id=request.id,
            order_id=order.id,
            user_id=user_id,
            cancellation_type=cancellation_type.value,
            expected_refund=estimate.total,
        ))
        return request, order, estimate

    async def _lock(self, request: CancellationRequest) -> tuple[CancellationRequest, Order]:
        """Lock the order, then re-read the request so a concurrent decision is seen."""
        order = await self.order_repository.get_for_update(request.order_id)
        if order is None:
            raise OrderNotFoundException(str(request.order_id))
        current = await self.cancellation_repository.get_for_update(request.id)
        if current is None:
            raise CancellationRequestNotFoundException(str(request.id))
        return current, order

    async def approve(
        self,
        request: CancellationRequest,
        *,
        admin_id: int,
        override_percentage: Any = None,
        comments: Optional[str] = None,
        customer: Optional[CustomerInfo] = None,
        now: Optional[datetime] = None,
    ) -> tuple[CancellationRequest, Order, RefundEstimate]:
        """Authoritative refund on server-side totals, then mutate order and ledger."""
        now = now or datetime.now(timezone.utc)
        request.ensure_pending()
        request, order = await self._lock(request)
        request.ensure_pending()

        if request.is_full_order:
            targets = order.active_items()
        else:
            wanted = set(request.item_ids())
            targets = [item for item in order.active_items() if item.id in wanted]
        if not targets:
            raise CancellationIneligibleException(
                "None of the requested items are still active",
                details={"request_id": request.id, "order_id": order.id},
            )

        snapshot = request.delivery_info
        estimate = self.estimate_refund(
            order,
            targets,
            context=CancellationContext(
                request_date=request.request_date,
                estimated_delivery_date=snapshot.estimated_delivery_date,
                actual_delivery_date=snapshot.actual_delivery_date,
                was_past_delivery_date=snapshot.was_past_delivery_date,
            ),
            customer=customer,
            override_percentage=override_percentage,
        )

        order.apply_cancellation(request.id, estimate.item_refunds, estimate.delivery_refund, now=now)
        for item in request.items_to_cancel:
            if item.item_id in estimate.item_refunds:
                item.refund_amount = estimate.item_refunds[item.item_id]
        request.total_refund_amount = estimate.total
        request.approve(
            admin_id,
            refund_amount=estimate.total,
            refund_percentage=estimate.refund_percentage,
            calculation=estimate.breakdown(),
            comments=comments,
            now=now,
        )
        order = await self.order_repository.update(order)
        request = await self.cancellation_repository.update(request)
        self.events.append(CancellationApproved(
            request_id=request.id,
            order_id=order.id,
            processed_by=admin_id,
            refund_amount=estimate.total,
            refund_percentage=estimate.refund_percentage,
            order_fully_cancelled=order.is_full_order_cancelled,
        ))
        return request, order, estimate

    async def reject(
        self,
        request: CancellationRequest,
        *,
        admin_id: int,
        comments: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[CancellationRequest, Order]:
        request.ensure_pending()
        request, order = await self._lock(request)
        request.ensure_pending()
        if request.previous_order_status:
            order.release_cancellation_hold(OrderStatus(request.previous_order_status))
            order = await self.order_repository.update(order)
        request.reject(admin_id, comments=comments, now=now)
        request = await self.cancellation_repository.update(request)
        self.events.append(CancellationRejected(
            request_id=request.id,
            order_id=order.id,
            processed_by=admin_id,
        ))
        return request, order

    async def complete_refund(
        self,
        request: CancellationRequest,
        *,
        transaction_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[CancellationRequest, Order]:
        now = now or datetime.now(timezone.utc)
        request, order = await self._lock(request)
        refund_id = transaction_ref or f"REF-{int(now.timestamp() * 1000)}"
        request.complete_refund(refund_id, now=now)
        order.complete_refund(
            request.id,
            refund_id=refund_id,
            refund_amount=request.refund_details.refund_amount,
            refund_percentage=request.admin_response.refund_percentage if request.admin_response else ZERO,
            refund_date=now,
        )
        order = await self.order_repository.update(order)
        request = await self.cancellation_repository.update(request)
        self.events.append(RefundCompleted(
            request_id=request.id,
            order_id=order.id,
            refund_id=refund_id,
            refund_amount=request.refund_details.refund_amount,
        ))
        return request, order

    def get_domain_events(self) -> list:
        events = self.events.copy()
        self.events.clear()
        return events
