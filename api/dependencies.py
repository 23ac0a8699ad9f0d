"""
API dependencies - authentication, authorization and service wiring
"""
import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Callable, Optional

from application.ports.notifier import Notifier
from application.services.cancellation_service import CancellationApplicationService
from application.services.order_service import OrderApplicationService
from application.services.token_service import TokenService
from core.exceptions import ForbiddenException, UnauthorizedException
from domain.common.exceptions import UserInactiveException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User
from infrastructure.adapters.email_notifier import CeleryEmailNotifier
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> str:
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("Authentication credentials were not provided")


def get_token_service() -> TokenService:
    return TokenService()


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


async def get_current_user(
    request: Request,
    token: str = Depends(get_token),
    tokens: TokenService = Depends(get_token_service),
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> User:
    """Resolve the bearer token to an active user"""
    user_id = tokens.verify_access_token(token)
    if user_id is None:
        raise UnauthorizedException("Invalid authentication credentials")
    async with uow_factory(readonly=True) as uow:
        user = await uow.user_repository.get_by_id(user_id)
    if user is None:
        raise UnauthorizedException("Invalid authentication credentials")
    if not user.is_active:
        raise UserInactiveException()
    request.state.user_id = user.id
    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_superuser:
        raise ForbiddenException()
    return current_user


def get_notifier() -> Notifier:
    return CeleryEmailNotifier()


def get_cancellation_service(
    notifier: Notifier = Depends(get_notifier),
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> CancellationApplicationService:
    return CancellationApplicationService(uow_factory=uow_factory, notifier=notifier)


def get_order_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> OrderApplicationService:
    return OrderApplicationService(uow_factory=uow_factory)
