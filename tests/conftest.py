"""Shared fixtures for storefront tests.

Service tests run against a temporary SQLite database file through
aiosqlite. A fresh engine is created per test with NullPool, so every
session opens its own connection and behaves like a separate client.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from storefront.domain.value_objects import CallerIdentity, Role
from storefront.infrastructure.database import Base
from storefront.infrastructure.models import ProductModel
from storefront.infrastructure.payment_gateway import (
    GatewayError,
    GatewayRefund,
    GatewaySession,
    LineItem,
    PayableSession,
)


# ============================================================================
# Fake Gateway
# ============================================================================


class FakePaymentGateway:
    """In-memory payment gateway recording every call."""

    name = "stripe"

    def __init__(self) -> None:
        self.sessions: dict[str, GatewaySession] = {}
        self.created: list[dict[str, Any]] = []
        self.refunds: list[dict[str, Any]] = []
        self.fail_with: GatewayError | None = None

    async def create_payable_session(
        self,
        line_items: list[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
        expires_at: datetime | None = None,
    ) -> PayableSession:
        if self.fail_with is not None:
            raise self.fail_with

        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions[session_id] = GatewaySession(
            session_id=session_id,
            payment_status="unpaid",
            session_status="open",
            metadata=dict(metadata),
        )
        self.created.append(
            {
                "session_id": session_id,
                "line_items": line_items,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata,
                "customer_email": customer_email,
                "expires_at": expires_at,
            }
        )
        return PayableSession(
            session_id=session_id,
            redirect_url=f"https://checkout.stripe.test/{session_id}",
        )

    async def retrieve_session(self, session_id: str) -> GatewaySession:
        if session_id not in self.sessions:
            raise GatewayError(f"No such checkout session: {session_id}", retryable=False)
        return self.sessions[session_id]

    async def create_refund(
        self,
        transaction_id: str,
        amount_cents: int | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayRefund:
        if self.fail_with is not None:
            raise self.fail_with

        refund_id = f"re_test_{len(self.refunds) + 1}"
        self.refunds.append(
            {
                "refund_id": refund_id,
                "transaction_id": transaction_id,
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            }
        )
        return GatewayRefund(refund_id=refund_id, status="succeeded")

    def complete_session(self, session_id: str, payment_intent_id: str) -> None:
        """Mark a session paid, as the hosted page would."""
        session = self.sessions[session_id]
        self.sessions[session_id] = GatewaySession(
            session_id=session_id,
            payment_status="paid",
            session_status="complete",
            metadata=session.metadata,
            payment_intent_id=payment_intent_id,
        )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to a fresh SQLite database."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def seed_product(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[str]]:
    """Insert a product and return its id."""

    async def _seed(
        product_id: str = "prod-1",
        title: str = "Ceramic Mug",
        price_cents: int = 2000,
        stock: int = 10,
        thumbnail: str | None = None,
    ) -> str:
        async with session_factory.begin() as session:
            session.add(
                ProductModel(
                    id=product_id,
                    title=title,
                    price_cents=price_cents,
                    stock=stock,
                    thumbnail=thumbnail,
                )
            )
        return product_id

    return _seed


@pytest.fixture
def product_state(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[ProductModel]]:
    """Read the committed state of a product."""

    async def _read(product_id: str) -> ProductModel:
        async with session_factory() as session:
            result = await session.execute(select(ProductModel).where(ProductModel.id == product_id))
            return result.scalar_one()

    return _read


@pytest.fixture
def stock_of(product_state) -> Callable[[str], Awaitable[int]]:
    """Read the committed stock of a product."""

    async def _stock(product_id: str) -> int:
        return (await product_state(product_id)).stock

    return _stock


# ============================================================================
# Identity and Gateway Fixtures
# ============================================================================


@pytest.fixture
def alice() -> CallerIdentity:
    return CallerIdentity(user_id="user-alice")


@pytest.fixture
def bob() -> CallerIdentity:
    return CallerIdentity(user_id="user-bob")


@pytest.fixture
def admin() -> CallerIdentity:
    return CallerIdentity(user_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()
