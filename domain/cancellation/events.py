"""
Cancellation domain events
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid


@dataclass
class CancellationRequested:
    request_id: int
    order_id: int
    user_id: int
    cancellation_type: str
    expected_refund: Decimal
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CancellationApproved:
    request_id: int
    order_id: int
    processed_by: int
    refund_amount: Decimal
    refund_percentage: Decimal
    order_fully_cancelled: bool
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CancellationRejected:
    request_id: int
    order_id: int
    processed_by: int
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RefundCompleted:
    """Refund paid out for an approved request"""
    request_id: int
    order_id: int
    refund_id: str
    refund_amount: Decimal
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
