"""
Shared fixtures for the gateway synchronization test suite.

Each test gets its own in-memory SQLite database and an AsyncMock standing in
for the Culqi client, so call counts can be asserted directly.
"""

from decimal import Decimal
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gateway_sync.core.config import Settings
from gateway_sync.db.base import Base
from gateway_sync.integrations.culqi import CulqiClient, GatewayResponse
from gateway_sync.models import Card, Customer, Plan, PlanStatus, Subscription, SubscriptionStatus

TEST_DATABASE_URL = "sqlite+aiosqlite://"


def ok(data: Optional[Dict[str, Any]] = None, status: int = 200, tracking_id: str = "trk_test") -> GatewayResponse:
    """Build a successful gateway response."""
    return GatewayResponse(data=data or {}, status=status, tracking_id=tracking_id)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        database_url=TEST_DATABASE_URL,
        redis_enabled=False,
        culqi_secret_key="sk_test_secret",
        culqi_public_key="pk_test_public",
        gateway_retry_delay_seconds=0,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncSession:
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with factory() as session:
        yield session


@pytest.fixture
def gateway() -> AsyncMock:
    """Culqi client double; configure ``request``/``create_resource`` per test."""
    client = AsyncMock(spec=CulqiClient)
    client.request.return_value = ok()
    return client


class MirrorFactory:
    """Seeds mirror rows directly, bypassing the gateway."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._sequence = 0

    def _next(self) -> int:
        self._sequence += 1
        return self._sequence

    async def customer(self, user_id: str = "user-1", **overrides: Any) -> Customer:
        number = self._next()
        customer = Customer(
            user_id=user_id,
            user_email=overrides.pop("user_email", f"{user_id}@example.com"),
            culqi_customer_id=overrides.pop("culqi_customer_id", f"cus_test_{number:04d}"),
            **overrides,
        )
        self.session.add(customer)
        await self.session.flush()
        return customer

    async def card(self, customer: Customer, **overrides: Any) -> Card:
        number = self._next()
        card = Card(
            culqi_card_id=overrides.pop("culqi_card_id", f"crd_test_{number:04d}"),
            customer=customer,
            culqi_customer_id=customer.culqi_customer_id,
            token_id=overrides.pop("token_id", f"tkn_test_{number:016d}"),
            last_four=overrides.pop("last_four", "1111"),
            card_brand=overrides.pop("card_brand", "Visa"),
            card_type=overrides.pop("card_type", "credito"),
            **overrides,
        )
        self.session.add(card)
        await self.session.flush()
        return card

    async def plan(self, code: str = "BASIC", **overrides: Any) -> Plan:
        number = self._next()
        plan = Plan(
            culqi_plan_id=overrides.pop("culqi_plan_id", f"pln_test_{number:04d}"),
            code=code,
            name=overrides.pop("name", f"Plan {code}"),
            short_name=overrides.pop("short_name", f"plan-{code.lower()}"),
            description=overrides.pop("description", f"Monthly plan {code}"),
            amount=overrides.pop("amount", Decimal("49.90")),
            currency_code=overrides.pop("currency_code", "PEN"),
            interval_unit_time=overrides.pop("interval_unit_time", 3),
            interval_count=overrides.pop("interval_count", 1),
            status=overrides.pop("status", int(PlanStatus.ACTIVE)),
            **overrides,
        )
        self.session.add(plan)
        await self.session.flush()
        return plan

    async def subscription(self, customer: Customer, card: Card, plan: Plan, **overrides: Any) -> Subscription:
        number = self._next()
        subscription = Subscription(
            culqi_subscription_id=overrides.pop("culqi_subscription_id", f"sxn_test_{number:04d}"),
            user_id=customer.user_id,
            user_email=customer.user_email,
            customer=customer,
            card=card,
            plan=plan,
            status=overrides.pop("status", int(SubscriptionStatus.ACTIVE)),
            terms_and_conditions=True,
            **overrides,
        )
        self.session.add(subscription)
        await self.session.flush()
        return subscription


@pytest.fixture
def factory(session) -> MirrorFactory:
    return MirrorFactory(session)
