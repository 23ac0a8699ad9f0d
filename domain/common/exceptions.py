"""Domain-level business exceptions shared by the domain and infrastructure layers.

The core layer only maps these to HTTP responses; the domain never imports core.
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """Base business exception"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        super().__init__(self.message)


class UserNotFoundException(BusinessException):
    def __init__(self, user_id: Optional[str] = None):
        details = {"user_id": user_id} if user_id else None
        super().__init__(
            code=BusinessCode.USER_NOT_FOUND,
            message="User not found",
            error_type="UserNotFound",
            details=details,
            message_key="user.not_found",
        )


class UserInactiveException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.USER_INACTIVE,
            message="User account is inactive",
            error_type="UserInactive",
            message_key="user.inactive",
        )


class UserAlreadyExistsException(BusinessException):
    def __init__(self, email: Optional[str] = None):
        super().__init__(
            code=BusinessCode.USER_ALREADY_EXISTS,
            message="A user with this email already exists",
            error_type="UserAlreadyExists",
            details={"email": email} if email else None,
            message_key="user.already_exists",
        )


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
        )


# ---------------------------------------------------------------------------
# Orders & cancellations
# ---------------------------------------------------------------------------


class CancellationValidationException(BusinessException):
    """Malformed or inconsistent cancellation input."""

    def __init__(self, message: str, *, field: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details=details,
            field=field,
            message_key="cancellation.validation",
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_ref: Optional[str] = None):
        details = {"order_ref": str(order_ref)} if order_ref is not None else None
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found or doesn't belong to you",
            error_type="OrderNotFound",
            details=details,
            message_key="order.not_found",
        )


class CancellationRequestNotFoundException(BusinessException):
    def __init__(self, identifier: Optional[str] = None):
        details = {"identifier": str(identifier)} if identifier is not None else None
        super().__init__(
            code=BusinessCode.CANCELLATION_NOT_FOUND,
            message="Cancellation request not found",
            error_type="CancellationRequestNotFound",
            details=details,
            message_key="cancellation.not_found",
        )


class CancellationConflictException(BusinessException):
    """The request or order is not in the state the operation expects."""

    code = BusinessCode.CONFLICT

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=self.code,
            message=message,
            error_type="ConflictError",
            details=details,
            message_key="cancellation.conflict",
        )


class PendingCancellationExistsException(CancellationConflictException):
    code = BusinessCode.CANCELLATION_PENDING_EXISTS

    def __init__(self, order_id: Optional[int] = None):
        super().__init__(
            "A pending cancellation request already exists for this order",
            details={"order_id": order_id} if order_id is not None else None,
        )


class RefundExceedsOrderTotalException(CancellationConflictException):
    code = BusinessCode.REFUND_LIMIT_EXCEEDED

    def __init__(self, refunded: str, limit: str):
        super().__init__(
            f"Refunded amount {refunded} would exceed the order total {limit}",
            details={"refunded": refunded, "limit": limit},
        )


class CancellationIneligibleException(BusinessException):
    """A business rule rejects the cancellation."""

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.NOT_ELIGIBLE,
            message=message,
            error_type="IneligibleError",
            details=details,
            message_key="cancellation.ineligible",
        )


class OrderUnderReviewException(BusinessException):
    """The order has a pending cancellation request and cannot be modified."""

    def __init__(self, order_id: Optional[int] = None):
        super().__init__(
            code=BusinessCode.ORDER_UNDER_REVIEW,
            message="Order has a pending cancellation request and cannot be modified",
            error_type="OrderUnderReview",
            details={"order_id": order_id} if order_id is not None else None,
            message_key="order.under_review",
        )


class RefundCalculationError(BusinessException):
    """The refund policy engine could not produce a result."""

    def __init__(self, message: str = "Refund calculation failed", *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.REFUND_ENGINE_ERROR,
            message=message,
            error_type="DependencyError",
            details=details,
            message_key="refund.calculation_failed",
        )
