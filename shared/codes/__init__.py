"""
Business codes carried in every response envelope (``code`` field).

0 is success; the leading digit groups the failure:
1xxxx request input, 2xxxx orders and cancellations, 3xxxx authentication,
4xxxx system, 5xxxx throttling.
"""
from enum import IntEnum


class BusinessCode(IntEnum):

    SUCCESS = 0

    # Request input (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # Orders and cancellations (2xxxx)
    NOT_FOUND = 20000
    USER_NOT_FOUND = 20001
    ORDER_NOT_FOUND = 20002
    CANCELLATION_NOT_FOUND = 20003
    CONFLICT = 20010  # request or order not in the expected state
    CANCELLATION_PENDING_EXISTS = 20011
    REFUND_LIMIT_EXCEEDED = 20012
    USER_ALREADY_EXISTS = 20013
    NOT_ELIGIBLE = 20020  # a cancellation rule rejects the operation
    ORDER_UNDER_REVIEW = 20021

    # Authentication and authorization (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002
    TOKEN_INVALID = 30003
    TOKEN_EXPIRED = 30004
    USER_INACTIVE = 30005

    # System (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    SERVICE_UNAVAILABLE = 40003
    REFUND_ENGINE_ERROR = 40004

    # Throttling (5xxxx)
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
