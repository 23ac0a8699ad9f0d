"""
Cancellation request and policy repositories - SQLAlchemy implementation
"""
from dataclasses import replace
from typing import Optional, Union
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError

from domain.cancellation.entity import (
    AdminResponse,
    CancellationItem,
    CancellationRequest,
    CancellationStatus,
    CancellationType,
    DeliverySnapshot,
    RefundDetails,
    RefundStatus,
)
from domain.cancellation.policy import RefundPolicy
from domain.cancellation.repository import CancellationRequestRepository, PolicyRepository
from domain.common.exceptions import (
    CancellationConflictException,
    CancellationRequestNotFoundException,
    PendingCancellationExistsException,
)
from infrastructure.models.cancellation import CancellationPolicyModel, CancellationRequestModel
from infrastructure.repositories.errors import violation_message
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyCancellationRequestRepository(CancellationRequestRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CancellationRequestModel) -> CancellationRequest:
        return CancellationRequest(
            id=model.id,
            order_id=model.order_id,
            user_id=model.user_id,
            cancellation_type=CancellationType(model.cancellation_type),
            reason=model.reason,
            items_to_cancel=[CancellationItem.from_dict(i) for i in (model.items_to_cancel or [])],
            additional_reason=model.additional_reason,
            status=CancellationStatus(model.status),
            cancellation_code=model.cancellation_code,
            delivery_info=DeliverySnapshot.from_dict(model.delivery_info),
            pricing_snapshot=model.pricing_snapshot,
            previous_order_status=model.previous_order_status,
            total_refund_amount=Decimal(str(model.total_refund_amount)),
            request_date=model.request_date,
            admin_response=AdminResponse.from_dict(model.admin_response),
            refund_details=RefundDetails.from_dict(model.refund_details),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: CancellationRequest) -> CancellationRequestModel:
        return CancellationRequestModel(
            id=entity.id,
            cancellation_code=entity.cancellation_code,
            order_id=entity.order_id,
            user_id=entity.user_id,
            cancellation_type=entity.cancellation_type.value,
            status=entity.status.value,
            reason=entity.reason,
            additional_reason=entity.additional_reason,
            items_to_cancel=[i.to_dict() for i in entity.items_to_cancel],
            delivery_info=entity.delivery_info.to_dict(),
            pricing_snapshot=entity.pricing_snapshot,
            previous_order_status=entity.previous_order_status,
            total_refund_amount=entity.total_refund_amount,
            admin_response=entity.admin_response.to_dict() if entity.admin_response else None,
            refund_details=entity.refund_details.to_dict() if entity.refund_details else None,
            refund_status=entity.refund_status.value if entity.refund_status else None,
            request_date=entity.request_date,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, request: CancellationRequest) -> CancellationRequest:
        try:
            db_request = self._to_model(request)
            self.session.add(db_request)
            await self.session.flush()
            await self.session.refresh(db_request)
            logger.info(
                "cancellation_request_created",
                request_id=db_request.id,
                cancellation_code=db_request.cancellation_code,
                order_id=db_request.order_id,
                cancellation_type=db_request.cancellation_type,
            )
            return self._to_entity(db_request)
        except IntegrityError as e:
            await self.session.rollback()
            msg = violation_message(e)
            if "uq_cancellation_pending_order" in msg or "cancellation_requests.order_id" in msg:
                logger.warning("cancellation_pending_conflict", order_id=request.order_id)
                raise PendingCancellationExistsException(request.order_id)
            if "cancellation_code" in msg:
                logger.warning("cancellation_code_conflict", cancellation_code=request.cancellation_code)
                raise CancellationConflictException(
                    "Cancellation code collision, please retry",
                    details={"cancellation_code": request.cancellation_code},
                )
            raise

    async def get_by_id(self, request_id: int) -> Optional[CancellationRequest]:
        result = await self.session.execute(
            select(CancellationRequestModel).where(CancellationRequestModel.id == request_id)
        )
        db_request = result.scalar_one_or_none()
        return self._to_entity(db_request) if db_request else None

    async def get_for_update(self, request_id: int) -> Optional[CancellationRequest]:
        result = await self.session.execute(
            select(CancellationRequestModel)
            .where(CancellationRequestModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        db_request = result.scalar_one_or_none()
        return self._to_entity(db_request) if db_request else None

    async def get_by_code(self, cancellation_code: str) -> Optional[CancellationRequest]:
        result = await self.session.execute(
            select(CancellationRequestModel).where(
                CancellationRequestModel.cancellation_code == cancellation_code
            )
        )
        db_request = result.scalar_one_or_none()
        return self._to_entity(db_request) if db_request else None

    async def resolve(self, identifier: Union[int, str]) -> Optional[CancellationRequest]:
        if isinstance(identifier, int) or str(identifier).strip().isdigit():
            found = await self.get_by_id(int(identifier))
            if found is not None:
                return found
        return await self.get_by_code(str(identifier).strip())

    async def get_pending_for_order(self, order_id: int) -> Optional[CancellationRequest]:
        result = await self.session.execute(
            select(CancellationRequestModel).where(
                CancellationRequestModel.order_id == order_id,
                CancellationRequestModel.status == CancellationStatus.PENDING.value,
            )
        )
        db_request = result.scalars().first()
        return self._to_entity(db_request) if db_request else None

    async def get_latest_for_order(self, order_id: int) -> Optional[CancellationRequest]:
        result = await self.session.execute(
            select(CancellationRequestModel)
            .where(CancellationRequestModel.order_id == order_id)
            .order_by(CancellationRequestModel.created_at.desc(), CancellationRequestModel.id.desc())
            .limit(1)
        )
        db_request = result.scalar_one_or_none()
        return self._to_entity(db_request) if db_request else None

    def _filtered(self, query, *, user_id=None, status=None, refund_status=None,
                  created_from=None, created_to=None):
        if user_id is not None:
            query = query.where(CancellationRequestModel.user_id == user_id)
        if status is not None:
            query = query.where(CancellationRequestModel.status == status.value)
        if refund_status is not None:
            query = query.where(CancellationRequestModel.refund_status == refund_status.value)
        if created_from is not None:
            query = query.where(CancellationRequestModel.created_at >= created_from)
        if created_to is not None:
            query = query.where(CancellationRequestModel.created_at <= created_to)
        return query

    async def list_requests(
        self,
        *,
        user_id: Optional[int] = None,
        status: Optional[CancellationStatus] = None,
        refund_status: Optional[RefundStatus] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> list[CancellationRequest]:
        query = self._filtered(
            select(CancellationRequestModel),
            user_id=user_id,
            status=status,
            refund_status=refund_status,
            created_from=created_from,
            created_to=created_to,
        )
        # newest first, id as tie-breaker for stable pages
        query = query.order_by(
            CancellationRequestModel.created_at.desc(),
            CancellationRequestModel.id.desc(),
        ).offset(skip)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_requests(
        self,
        *,
        user_id: Optional[int] = None,
        status: Optional[CancellationStatus] = None,
        refund_status: Optional[RefundStatus] = None,
    ) -> int:
        query = self._filtered(
            select(func.count(CancellationRequestModel.id)),
            user_id=user_id,
            status=status,
            refund_status=refund_status,
        )
        result = await self.session.execute(query)
        return result.scalar_one()

    async def update(self, request: CancellationRequest) -> CancellationRequest:
        result = await self.session.execute(
            select(CancellationRequestModel).where(CancellationRequestModel.id == request.id)
        )
        db_request = result.scalar_one_or_none()
        if not db_request:
            raise CancellationRequestNotFoundException(str(request.id))

        db_request.status = request.status.value
        db_request.items_to_cancel = [i.to_dict() for i in request.items_to_cancel]
        db_request.total_refund_amount = request.total_refund_amount
        db_request.admin_response = request.admin_response.to_dict() if request.admin_response else None
        db_request.refund_details = request.refund_details.to_dict() if request.refund_details else None
        db_request.refund_status = request.refund_status.value if request.refund_status else None
        db_request.updated_at = request.updated_at

        await self.session.flush()
        await self.session.refresh(db_request)

        logger.info(
            "cancellation_request_updated",
            request_id=db_request.id,
            status=db_request.status,
            refund_status=db_request.refund_status,
        )
        return self._to_entity(db_request)


class SQLAlchemyPolicyRepository(PolicyRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _active_model(self) -> Optional[CancellationPolicyModel]:
        result = await self.session.execute(
            select(CancellationPolicyModel)
            .where(CancellationPolicyModel.is_active.is_(True))
            .order_by(CancellationPolicyModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active(self, defaults: RefundPolicy) -> RefundPolicy:
        db_policy = await self._active_model()
        if db_policy is None:
            return defaults
        policy = RefundPolicy.from_document(db_policy.document, base=defaults)
        return replace(policy, updated_by=db_policy.updated_by, updated_at=db_policy.updated_at)

    async def save(self, policy: RefundPolicy) -> RefundPolicy:
        # deactivate the previous document so exactly one stays active
        await self.session.execute(
            update(CancellationPolicyModel)
            .where(CancellationPolicyModel.is_active.is_(True))
            .values(is_active=False)
        )
        db_policy = CancellationPolicyModel(
            is_active=True,
            document=policy.to_document(),
            updated_by=policy.updated_by,
            updated_at=policy.updated_at or datetime.now(timezone.utc),
        )
        self.session.add(db_policy)
        await self.session.flush()
        await self.session.refresh(db_policy)
        logger.info("cancellation_policy_saved", policy_id=db_policy.id, updated_by=db_policy.updated_by)
        return policy
