"""Unit of Work abstraction"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.cancellation.repository import CancellationRequestRepository, PolicyRepository
from domain.order.repository import OrderRepository
from domain.user.repository import UserRepository


class AbstractUnitOfWork(ABC):
    """Transaction boundary used by the application layer"""

    user_repository: UserRepository
    order_repository: OrderRepository
    cancellation_repository: CancellationRequestRepository
    policy_repository: PolicyRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.user_repository = None  # type: ignore[assignment]
        self.order_repository = None  # type: ignore[assignment]
        self.cancellation_repository = None  # type: ignore[assignment]
        self.policy_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # auto-commit only when writable and not committed explicitly
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...
