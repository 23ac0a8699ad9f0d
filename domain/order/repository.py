"""
Order repository interface
"""
from abc import ABC, abstractmethod
from typing import Optional, Union

from .entity import Order


class OrderRepository(ABC):
    """Order repository abstraction: what can be done, not how"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """Persist a new order with its items"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_code(self, order_code: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def resolve(self, order_ref: Union[int, str]) -> Optional[Order]:
        """Look up by id when the reference is numeric, then by order code"""
        pass

    @abstractmethod
    async def get_for_update(self, order_ref: Union[int, str]) -> Optional[Order]:
        """Load by id or order code and lock the row for the current transaction"""
        pass

    @abstractmethod
    async def get_many(self, order_ids: list[int]) -> dict[int, Order]:
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """Save statuses, totals, item changes and new ledger entries"""
        pass
