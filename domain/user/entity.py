"""
User entity - customers and administrators
"""
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass
from enum import Enum
import re

from domain.common.exceptions import DomainValidationException


class MembershipTier(str, Enum):
    REGULAR = "REGULAR"
    VIP = "VIP"


@dataclass
class User:
    """User entity"""

    id: Optional[int]
    email: str
    full_name: Optional[str] = None
    is_active: bool = True
    is_superuser: bool = False
    membership_tier: MembershipTier = MembershipTier.REGULAR
    order_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.validate_email()
        if self.order_count < 0:
            raise DomainValidationException("Order count cannot be negative", field="order_count")

    def validate_email(self) -> None:
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, self.email):
            raise DomainValidationException(f"Invalid email address: {self.email}", field="email")

    @property
    def is_vip(self) -> bool:
        return self.membership_tier == MembershipTier.VIP

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@", 1)[0]

    def record_order(self) -> None:
        self.order_count += 1
        self.updated_at = datetime.now(timezone.utc)
