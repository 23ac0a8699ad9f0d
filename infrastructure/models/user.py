"""
User ORM model
Infrastructure detail only; business rules live in domain.user.entity.User
"""
from sqlalchemy import Column, Integer, String, Boolean

from .base import Base, TimestampMixin


class UserModel(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String(100), unique=True, index=True, nullable=False, comment="Email")
    full_name = Column(String(100), nullable=True, comment="Full name")

    is_active = Column(Boolean, default=True, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False, comment="Administrator flag")

    # refund bonus inputs
    membership_tier = Column(String(20), default="REGULAR", nullable=False, comment="REGULAR/VIP")
    order_count = Column(Integer, default=0, nullable=False, comment="Completed orders")

    def __repr__(self):
        return f"<UserModel(id={self.id}, email='{self.email}', tier='{self.membership_tier}')>"
