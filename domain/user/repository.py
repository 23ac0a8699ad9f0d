"""
User repository interface
"""
from abc import ABC, abstractmethod
from typing import Optional
from .entity import User


class UserRepository(ABC):
    """User repository abstraction - what can be done, not how"""

    @abstractmethod
    async def create(self, user: User) -> User:
        pass

    @abstractmethod
    async def get_by_id(self, user_id: int) -> Optional[User]:
        pass

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_many(self, user_ids: list[int]) -> dict[int, User]:
        """Batch lookup keyed by id; missing ids are left out"""
        pass

    @abstractmethod
    async def update(self, user: User) -> User:
        pass
