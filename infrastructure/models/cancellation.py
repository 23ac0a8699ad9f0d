"""
Cancellation ORM models: requests and the active policy document
Infrastructure detail only; business rules live in domain.cancellation
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON, Boolean,
    Index, ForeignKey, text
)

from .base import Base, TimestampMixin


class CancellationRequestModel(TimestampMixin, Base):
    __tablename__ = "cancellation_requests"

    id = Column(Integer, primary_key=True, index=True)
    cancellation_code = Column(String(32), unique=True, index=True, nullable=False, comment="Business id, CXL-...")
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    cancellation_type = Column(String(20), nullable=False, comment="FULL_ORDER/PARTIAL_ITEMS")
    status = Column(String(20), nullable=False, default="PENDING", index=True)

    reason = Column(String(255), nullable=False)
    additional_reason = Column(Text, nullable=True)
    items_to_cancel = Column(JSON, nullable=False, default=list)
    delivery_info = Column(JSON, nullable=True)
    pricing_snapshot = Column(JSON, nullable=True)
    previous_order_status = Column(String(50), nullable=True)
    total_refund_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0)

    admin_response = Column(JSON, nullable=True)
    refund_details = Column(JSON, nullable=True)
    # denormalized from refund_details for filtering
    refund_status = Column(String(20), nullable=True, index=True)

    request_date = Column(DateTime(timezone=True), nullable=False)
    __table_args__ = (
        # at most one PENDING request per order
        Index(
            "uq_cancellation_pending_order",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("ix_cancellation_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<CancellationRequestModel(id={self.id}, code='{self.cancellation_code}', "
            f"order_id={self.order_id}, status='{self.status}')>"
        )


class CancellationPolicyModel(TimestampMixin, Base):
    __tablename__ = "cancellation_policies"

    id = Column(Integer, primary_key=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    document = Column(JSON, nullable=False, comment="Policy document consumed by the refund engine")
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    def __repr__(self):
        return f"<CancellationPolicyModel(id={self.id}, is_active={self.is_active})>"
