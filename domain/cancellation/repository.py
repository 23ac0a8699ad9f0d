"""
Cancellation repository interfaces
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Union

from .entity import CancellationRequest, CancellationStatus, RefundStatus
from .policy import RefundPolicy


class CancellationRequestRepository(ABC):
    """Cancellation request repository abstraction"""

    @abstractmethod
    async def create(self, request: CancellationRequest) -> CancellationRequest:
        """Persist a new request; a second PENDING request for the same order is a conflict"""
        pass

    @abstractmethod
    async def get_by_id(self, request_id: int) -> Optional[CancellationRequest]:
        pass

    @abstractmethod
    async def get_by_code(self, cancellation_code: str) -> Optional[CancellationRequest]:
        pass

    @abstractmethod
    async def get_for_update(self, request_id: int) -> Optional[CancellationRequest]:
        """Re-read a request with a row lock, bypassing any cached state"""
        pass

    @abstractmethod
    async def resolve(self, identifier: Union[int, str]) -> Optional[CancellationRequest]:
        """Look up by primary key when the identifier is numeric, then by cancellation code"""
        pass

    @abstractmethod
    async def get_pending_for_order(self, order_id: int) -> Optional[CancellationRequest]:
        pass

    @abstractmethod
    async def get_latest_for_order(self, order_id: int) -> Optional[CancellationRequest]:
        pass

    @abstractmethod
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
        """Newest first"""
        pass

    @abstractmethod
    async def count_requests(
        self,
        *,
        user_id: Optional[int] = None,
        status: Optional[CancellationStatus] = None,
        refund_status: Optional[RefundStatus] = None,
    ) -> int:
        pass

    @abstractmethod
    async def update(self, request: CancellationRequest) -> CancellationRequest:
        pass


class PolicyRepository(ABC):
    """Storage of the active cancellation policy document"""

    @abstractmethod
    async def get_active(self, defaults: RefundPolicy) -> RefundPolicy:
        """Stored document overlaid on ``defaults``; ``defaults`` when nothing is stored"""
        pass

    @abstractmethod
    async def save(self, policy: RefundPolicy) -> RefundPolicy:
        """Replace the active policy"""
        pass
