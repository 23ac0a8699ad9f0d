"""
User repository - SQLAlchemy implementation
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from domain.user.entity import MembershipTier, User
from domain.user.repository import UserRepository
from infrastructure.models.user import UserModel
from infrastructure.repositories.errors import violation_message
from core.logging_config import get_logger
from domain.common.exceptions import (
    UserAlreadyExistsException,
    UserNotFoundException,
)


logger = get_logger(__name__)


class SQLAlchemyUserRepository(UserRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        return User(
            id=model.id,
            email=model.email,
            full_name=model.full_name,
            is_active=model.is_active,
            is_superuser=model.is_superuser,
            membership_tier=MembershipTier(model.membership_tier),
            order_count=model.order_count,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: User) -> UserModel:
        return UserModel(
            id=entity.id,
            email=entity.email,
            full_name=entity.full_name,
            is_active=entity.is_active,
            is_superuser=entity.is_superuser,
            membership_tier=entity.membership_tier.value,
            order_count=entity.order_count,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, user: User) -> User:
        try:
            db_user = self._to_model(user)
            self.session.add(db_user)
            await self.session.flush()  # assigns the id
            await self.session.refresh(db_user)
            return self._to_entity(db_user)
        except IntegrityError as e:
            await self.session.rollback()
            if "email" in violation_message(e):
                logger.warning("create_user_conflict", field="email", email=user.email)
                raise UserAlreadyExistsException(user.email)
            raise

    async def get_by_id(self, user_id: int) -> Optional[User]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user_id)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.email == email)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def get_many(self, user_ids: list[int]) -> dict[int, User]:
        if not user_ids:
            return {}
        result = await self.session.execute(
            select(UserModel).where(UserModel.id.in_(set(user_ids)))
        )
        return {m.id: self._to_entity(m) for m in result.scalars().all()}

    async def update(self, user: User) -> User:
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user.id)
        )
        db_user = result.scalar_one_or_none()

        if not db_user:
            raise UserNotFoundException(str(user.id))

        db_user.full_name = user.full_name
        db_user.is_active = user.is_active
        db_user.is_superuser = user.is_superuser
        db_user.membership_tier = user.membership_tier.value
        db_user.order_count = user.order_count
        db_user.updated_at = user.updated_at

        await self.session.flush()
        await self.session.refresh(db_user)
        return self._to_entity(db_user)
