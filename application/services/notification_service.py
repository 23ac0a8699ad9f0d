"""
Customer notifications for the cancellation workflow.

Every method is fire-and-forget: a failed hand-off is logged and never
reaches the caller, whose transaction has already committed.
"""
from __future__ import annotations

from typing import Any, Optional

from application.ports.notifier import Notifier
from core.logging_config import get_logger
from domain.cancellation.entity import CancellationRequest
from domain.order.entity import Order
from domain.user.entity import User


logger = get_logger(__name__)


class NotificationService:

    def __init__(self, notifier: Optional[Notifier]):
        self._notifier = notifier

    def _send(self, user: Optional[User], subject: str, template: str, context: dict[str, Any]) -> bool:
        if self._notifier is None or user is None or not user.email:
            return False
        context = {"customer_name": user.display_name, **context}
        try:
            self._notifier.send(user.email, subject, template, context)
        except Exception as exc:
            logger.warning(
                "notification_failed",
                template=template,
                user_id=user.id,
                error=str(exc),
            )
            return False
        logger.info("notification_sent", template=template, user_id=user.id)
        return True

    def cancellation_requested(
        self,
        user: Optional[User],
        order: Order,
        request: CancellationRequest,
        *,
        refund_percentage: Any,
        response_time_hours: int,
    ) -> bool:
        return self._send(
            user,
            f"Cancellation request received - Order {order.order_code}",
            "cancellation_requested",
            {
                "order_code": order.order_code,
                "cancellation_code": request.cancellation_code,
                "cancellation_type": request.cancellation_type.value,
                "reason": request.reason,
                "items": [item.to_dict() for item in request.items_to_cancel],
                "expected_refund": str(request.total_refund_amount),
                "refund_percentage": str(refund_percentage),
                "response_time_hours": response_time_hours,
            },
        )

    def cancellation_approved(
        self,
        user: Optional[User],
        order: Order,
        request: CancellationRequest,
        breakdown: dict,
    ) -> bool:
        admin = request.admin_response
        return self._send(
            user,
            f"Cancellation approved - Order {order.order_code}",
            "cancellation_approved",
            {
                "order_code": order.order_code,
                "cancellation_code": request.cancellation_code,
                "refund_amount": str(request.total_refund_amount),
                "refund_percentage": str(admin.refund_percentage) if admin else "0",
                "item_refunds": breakdown.get("item_refunds", {}),
                "delivery_refund": breakdown.get("delivery_refund"),
                "comments": admin.comments if admin else None,
            },
        )

    def cancellation_rejected(self, user: Optional[User], order: Order, request: CancellationRequest) -> bool:
        return self._send(
            user,
            f"Cancellation request update - Order {order.order_code}",
            "cancellation_rejected",
            {
                "order_code": order.order_code,
                "cancellation_code": request.cancellation_code,
                "comments": request.admin_response.comments if request.admin_response else None,
                "order_status": order.order_status.value,
            },
        )

    def refund_invoice(self, user: Optional[User], order: Order, request: CancellationRequest) -> bool:
        details = order.refund_details
        return self._send(
            user,
            f"Refund completed - Order {order.order_code}",
            "refund_invoice",
            {
                "order_code": order.order_code,
                "cancellation_code": request.cancellation_code,
                "refund_id": request.refund_details.refund_id,
                "refund_date": request.refund_details.refund_date.isoformat(),
                "refund_amount": str(request.refund_details.refund_amount),
                "original_total": str(order.original_total_amt),
                "retained_amount": str(details.retained_amount) if details else None,
            },
        )
