"""
Order repository - SQLAlchemy implementation
"""
from typing import Optional, Union
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from domain.common.exceptions import CancellationConflictException, OrderNotFoundException
from domain.order.entity import (
    ItemRefundStatus,
    ItemStatus,
    ItemType,
    Order,
    OrderItem,
    OrderRefundDetails,
    OrderStatus,
    PaymentStatus,
    RefundLedgerEntry,
)
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderItemModel, OrderModel, RefundLedgerModel
from infrastructure.repositories.errors import violation_message
from core.logging_config import get_logger


logger = get_logger(__name__)


def _dec(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


class SQLAlchemyOrderRepository(OrderRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _item_to_entity(self, model: OrderItemModel) -> OrderItem:
        return OrderItem(
            id=model.id,
            item_type=ItemType(model.item_type),
            quantity=model.quantity,
            unit_price=_dec(model.unit_price),
            name=model.name,
            product_id=model.product_id,
            bundle_id=model.bundle_id,
            size=model.size,
            size_adjusted_price=_dec(model.size_adjusted_price),
            item_total=_dec(model.item_total),
            status=ItemStatus(model.status),
            cancel_approved=model.cancel_approved,
            refund_status=ItemRefundStatus(model.refund_status) if model.refund_status else None,
            refund_amount=_dec(model.refund_amount),
            cancellation_request_id=model.cancellation_request_id,
        )

    def _ledger_to_entity(self, model: RefundLedgerModel) -> RefundLedgerEntry:
        return RefundLedgerEntry(
            id=model.id,
            item_id=model.item_id,
            cancellation_request_id=model.cancellation_request_id,
            amount=_dec(model.amount),
            status=ItemRefundStatus(model.status),
            created_at=model.created_at,
            processed_date=model.processed_date,
        )

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            id=model.id,
            order_code=model.order_code,
            user_id=model.user_id,
            items=[self._item_to_entity(i) for i in model.items],
            delivery_charge=_dec(model.delivery_charge),
            sub_total_amt=_dec(model.sub_total_amt),
            total_amt=_dec(model.total_amt),
            original_total_amt=_dec(model.original_total_amt),
            total_quantity=model.total_quantity,
            order_status=OrderStatus(model.order_status),
            payment_status=PaymentStatus(model.payment_status),
            payment_method=model.payment_method,
            order_date=model.order_date,
            estimated_delivery_date=model.estimated_delivery_date,
            actual_delivery_date=model.actual_delivery_date,
            delivery_notes=model.delivery_notes,
            is_full_order_cancelled=model.is_full_order_cancelled,
            refund_summary=[self._ledger_to_entity(e) for e in model.refund_summary],
            refund_details=OrderRefundDetails.from_dict(model.refund_details),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _item_to_model(self, entity: OrderItem) -> OrderItemModel:
        return OrderItemModel(
            id=entity.id,
            item_type=entity.item_type.value,
            product_id=entity.product_id,
            bundle_id=entity.bundle_id,
            name=entity.name,
            quantity=entity.quantity,
            unit_price=entity.unit_price,
            size=entity.size,
            size_adjusted_price=entity.size_adjusted_price,
            item_total=entity.item_total,
            status=entity.status.value,
            cancel_approved=entity.cancel_approved,
            refund_status=entity.refund_status.value if entity.refund_status else None,
            refund_amount=entity.refund_amount,
            cancellation_request_id=entity.cancellation_request_id,
        )

    def _ledger_to_model(self, entity: RefundLedgerEntry) -> RefundLedgerModel:
        return RefundLedgerModel(
            item_id=entity.item_id,
            cancellation_request_id=entity.cancellation_request_id,
            amount=entity.amount,
            status=entity.status.value,
            processed_date=entity.processed_date,
            created_at=entity.created_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        return OrderModel(
            id=entity.id,
            order_code=entity.order_code,
            user_id=entity.user_id,
            sub_total_amt=entity.sub_total_amt,
            delivery_charge=entity.delivery_charge,
            total_amt=entity.total_amt,
            original_total_amt=entity.original_total_amt,
            total_quantity=entity.total_quantity,
            order_status=entity.order_status.value,
            payment_status=entity.payment_status.value,
            payment_method=entity.payment_method,
            order_date=entity.order_date,
            estimated_delivery_date=entity.estimated_delivery_date,
            actual_delivery_date=entity.actual_delivery_date,
            delivery_notes=entity.delivery_notes,
            is_full_order_cancelled=entity.is_full_order_cancelled,
            refund_details=entity.refund_details.to_dict() if entity.refund_details else None,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            items=[self._item_to_model(i) for i in entity.items],
            refund_summary=[self._ledger_to_model(e) for e in entity.refund_summary],
        )

    async def create(self, order: Order) -> Order:
        try:
            db_order = self._to_model(order)
            self.session.add(db_order)
            await self.session.flush()
            await self.session.refresh(db_order)
            logger.info(
                "order_created",
                order_id=db_order.id,
                order_code=db_order.order_code,
                total_amt=str(db_order.total_amt),
            )
            return self._to_entity(db_order)
        except IntegrityError as e:
            await self.session.rollback()
            if "order_code" in violation_message(e):
                logger.warning("order_create_conflict", order_code=order.order_code)
                raise CancellationConflictException(
                    f"Order code {order.order_code} already exists",
                    details={"order_code": order.order_code},
                )
            raise

    async def _get_model(self, order_id: int, *, for_update: bool = False) -> Optional[OrderModel]:
        query = select(OrderModel).where(OrderModel.id == order_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        db_order = await self._get_model(order_id)
        return self._to_entity(db_order) if db_order else None

    async def get_by_code(self, order_code: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.order_code == order_code)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def resolve(self, order_ref: Union[int, str]) -> Optional[Order]:
        order = None
        if isinstance(order_ref, int) or str(order_ref).strip().isdigit():
            order = await self.get_by_id(int(order_ref))
        if order is None:
            order = await self.get_by_code(str(order_ref).strip())
        return order

    async def get_for_update(self, order_ref: Union[int, str]) -> Optional[Order]:
        db_order = None
        if isinstance(order_ref, int) or str(order_ref).isdigit():
            db_order = await self._get_model(int(order_ref), for_update=True)
        if db_order is None:
            result = await self.session.execute(
                select(OrderModel)
                .where(OrderModel.order_code == str(order_ref))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_many(self, order_ids: list[int]) -> dict[int, Order]:
        if not order_ids:
            return {}
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id.in_(set(order_ids)))
        )
        return {m.id: self._to_entity(m) for m in result.scalars().all()}

    async def update(self, order: Order) -> Order:
        db_order = await self._get_model(order.id)
        if not db_order:
            raise OrderNotFoundException(str(order.id))

        db_order.sub_total_amt = order.sub_total_amt
        db_order.total_amt = order.total_amt
        db_order.total_quantity = order.total_quantity
        db_order.order_status = order.order_status.value
        db_order.payment_status = order.payment_status.value
        db_order.estimated_delivery_date = order.estimated_delivery_date
        db_order.actual_delivery_date = order.actual_delivery_date
        db_order.delivery_notes = order.delivery_notes
        db_order.is_full_order_cancelled = order.is_full_order_cancelled
        db_order.refund_details = order.refund_details.to_dict() if order.refund_details else None
        db_order.updated_at = order.updated_at

        items_by_id = {m.id: m for m in db_order.items}
        for item in order.items:
            db_item = items_by_id.get(item.id)
            if db_item is None:
                continue
            db_item.status = item.status.value
            db_item.cancel_approved = item.cancel_approved
            db_item.refund_status = item.refund_status.value if item.refund_status else None
            db_item.refund_amount = item.refund_amount
            db_item.cancellation_request_id = item.cancellation_request_id

        # ledger is append-only: update statuses of known rows, insert the rest
        ledger_by_id = {m.id: m for m in db_order.refund_summary}
        for entry in order.refund_summary:
            if entry.id is None:
                db_order.refund_summary.append(self._ledger_to_model(entry))
                continue
            db_entry = ledger_by_id.get(entry.id)
            if db_entry is not None:
                db_entry.status = entry.status.value
                db_entry.processed_date = entry.processed_date

        await self.session.flush()
        await self.session.refresh(db_order)

        logger.info(
            "order_updated",
            order_id=db_order.id,
            order_status=db_order.order_status,
            payment_status=db_order.payment_status,
            total_amt=str(db_order.total_amt),
        )
        return self._to_entity(db_order)
