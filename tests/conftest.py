"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MAIL__API_KEY", "")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from domain.order.entity import ItemType, Order, OrderItem, OrderStatus, PaymentStatus
from domain.user.entity import MembershipTier, User
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    """Notifier stub that keeps every message it is asked to send."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    def send(self, to_address: str, subject: str, template: str, context: Mapping[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("mail broker down")
        self.sent.append({"to": to_address, "subject": subject, "template": template, "context": dict(context)})

    def templates(self) -> list[str]:
        return [m["template"] for m in self.sent]


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    def factory(readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)
    return factory


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def seed(uow_factory):
    """Persist users and orders through the repositories."""

    class Seeder:
        async def user(
            self,
            email: str = "alice@example.com",
            *,
            is_superuser: bool = False,
            membership_tier: MembershipTier = MembershipTier.REGULAR,
            order_count: int = 0,
            is_active: bool = True,
        ) -> User:
            async with uow_factory() as uow:
                return await uow.user_repository.create(User(
                    id=None,
                    email=email,
                    full_name=email.split("@")[0].title(),
                    is_superuser=is_superuser,
                    membership_tier=membership_tier,
                    order_count=order_count,
                    is_active=is_active,
                ))

        async def order(
            self,
            user: User,
            *,
            code: str = "ORD-1001",
            prices: tuple = (Decimal("600"), Decimal("400")),
            delivery_charge: Decimal = Decimal("100"),
            order_date: Optional[datetime] = None,
            order_status: OrderStatus = OrderStatus.ORDER_PLACED,
            payment_status: PaymentStatus = PaymentStatus.PAID,
            payment_method: str = "ONLINE",
            estimated_delivery_date: Optional[datetime] = None,
            actual_delivery_date: Optional[datetime] = None,
        ) -> Order:
            items = [
                OrderItem(
                    id=None,
                    item_type=ItemType.PRODUCT,
                    quantity=1,
                    unit_price=price,
                    name=f"Item {index + 1}",
                    product_id=f"P-{index + 1}",
                )
                for index, price in enumerate(prices)
            ]
            order = Order(
                id=None,
                order_code=code,
                user_id=user.id,
                items=items,
                delivery_charge=delivery_charge,
                order_status=order_status,
                payment_status=payment_status,
                payment_method=payment_method,
                order_date=order_date or NOW - timedelta(days=1),
                estimated_delivery_date=estimated_delivery_date,
                actual_delivery_date=actual_delivery_date,
                created_at=order_date or NOW - timedelta(days=1),
                updated_at=order_date or NOW - timedelta(days=1),
            )
            async with uow_factory() as uow:
                return await uow.order_repository.create(order)

        async def load_order(self, order_id: int) -> Order:
            async with uow_factory(readonly=True) as uow:
                return await uow.order_repository.get_by_id(order_id)

    return Seeder()
