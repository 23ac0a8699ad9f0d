"""
Order ORM models: orders, their line items and the refund ledger
Infrastructure detail only; business rules live in domain.order.entity.Order
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON, Boolean,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship

from .base import Base, TimestampMixin, utcnow


class OrderModel(TimestampMixin, Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_code = Column(String(50), unique=True, index=True, nullable=False, comment="Human-readable order code")
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # amounts
    sub_total_amt = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    delivery_charge = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    total_amt = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    original_total_amt = Column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=0,
        comment="Total at checkout, upper bound for refunds"
    )
    total_quantity = Column(Integer, nullable=False, default=0)

    order_status = Column(String(50), nullable=False, default="ORDER_PLACED", index=True)
    payment_status = Column(String(50), nullable=False, default="PENDING", index=True)
    payment_method = Column(String(50), nullable=False, default="ONLINE")

    order_date = Column(DateTime(timezone=True), nullable=True)
    estimated_delivery_date = Column(DateTime(timezone=True), nullable=True)
    actual_delivery_date = Column(DateTime(timezone=True), nullable=True)
    delivery_notes = Column(Text, nullable=True)

    is_full_order_cancelled = Column(Boolean, nullable=False, default=False)
    refund_details = Column(JSON, nullable=True, comment="Last completed refund")

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItemModel.id",
        cascade="all, delete-orphan",
    )
    refund_summary = relationship(
        "RefundLedgerModel",
        back_populates="order",
        lazy="selectin",
        order_by="RefundLedgerModel.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, order_code='{self.order_code}', "
            f"total_amt={self.total_amt}, status='{self.order_status}')>"
        )


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_type = Column(String(20), nullable=False, default="product", comment="product/bundle")
    product_id = Column(String(100), nullable=True)
    bundle_id = Column(String(100), nullable=True)
    name = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False)
    size = Column(String(50), nullable=True)
    size_adjusted_price = Column(Numeric(precision=15, scale=2), nullable=True)
    item_total = Column(Numeric(precision=15, scale=2), nullable=False)

    status = Column(String(20), nullable=False, default="Active", comment="Active/Cancelled")
    cancel_approved = Column(Boolean, nullable=False, default=False)
    refund_status = Column(String(20), nullable=True, comment="Processing/Completed")
    refund_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    cancellation_request_id = Column(Integer, nullable=True, index=True)

    order = relationship("OrderModel", back_populates="items")

    def __repr__(self):
        return f"<OrderItemModel(id={self.id}, order_id={self.order_id}, status='{self.status}')>"


class RefundLedgerModel(Base):
    """
    Append-only refund summary rows. ``item_id`` is NULL for the delivery charge.
    """
    __tablename__ = "order_refund_ledger"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id = Column(Integer, nullable=True)
    cancellation_request_id = Column(Integer, nullable=True, index=True)
    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    status = Column(String(20), nullable=False, default="Processing")
    processed_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    order = relationship("OrderModel", back_populates="refund_summary")

    def __repr__(self):
        return (
            f"<RefundLedgerModel(id={self.id}, order_id={self.order_id}, "
            f"item_id={self.item_id}, amount={self.amount})>"
        )
