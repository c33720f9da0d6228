"""Shared fixtures for API tests.

The app runs against a temporary SQLite file and the in-memory fake
gateway. Tables are created and products seeded through a synchronous
engine on the same file.
"""

import hashlib
import hmac
import json
import time
from collections.abc import Callable, Generator

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from storefront.api.dependencies import get_payment_gateway, get_session_factory
from storefront.infrastructure.config import settings
from storefront.infrastructure.database import Base
from storefront.infrastructure.models import ProductModel
from storefront.main import app


def make_token(user_id: str, role: str = "user") -> str:
    """Issue a bearer token the way the identity provider would."""
    return jwt.encode(
        {"id": user_id, "role": role},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def auth(user_id: str, role: str = "user") -> dict[str, str]:
    """Get authentication headers for a user."""
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


def stripe_signature(payload: bytes, secret: str | None = None) -> str:
    """Build a Stripe-Signature header for a payload."""
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    key = (secret or settings.stripe_webhook_secret).encode()
    return f"t={timestamp},v1={hmac.new(key, signed, hashlib.sha256).hexdigest()}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_1") -> bytes:
    """Encode a Stripe event payload."""
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()


# ============================================================================
# Database and Client Fixtures
# ============================================================================


@pytest.fixture
def sync_engine(tmp_path) -> Generator[Engine, None, None]:
    """Synchronous engine on a fresh database file with all tables."""
    engine = create_engine(f"sqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def api_session_factory(sync_engine, tmp_path) -> async_sessionmaker[AsyncSession]:
    """Async session factory the app uses, on the same database file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        poolclass=NullPool,
    )
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def client(api_session_factory, gateway) -> Generator[TestClient, None, None]:
    """Test client wired to the test database and the fake gateway."""
    app.dependency_overrides[get_session_factory] = lambda: api_session_factory
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seed(sync_engine) -> Callable[..., str]:
    """Insert a product and return its id."""

    def _seed(
        product_id: str = "prod-1",
        title: str = "Ceramic Mug",
        price_cents: int = 2000,
        stock: int = 10,
    ) -> str:
        with Session(sync_engine) as session, session.begin():
            session.add(
                ProductModel(id=product_id, title=title, price_cents=price_cents, stock=stock)
            )
        return product_id

    return _seed


@pytest.fixture
def stock(sync_engine) -> Callable[[str], int]:
    """Read the committed stock of a product."""

    def _stock(product_id: str) -> int:
        with Session(sync_engine) as session:
            return session.get(ProductModel, product_id).stock

    return _stock


@pytest.fixture
def alice_headers() -> dict[str, str]:
    return auth("user-alice")


@pytest.fixture
def bob_headers() -> dict[str, str]:
    return auth("user-bob")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth("admin-1", role="admin")


@pytest.fixture
def headers_for() -> Callable[..., dict[str, str]]:
    """Build authentication headers for any user and role."""
    return auth


@pytest.fixture
def signed_event() -> Callable[..., tuple[bytes, dict[str, str]]]:
    """Encode a Stripe event and sign it with the configured secret."""

    def _signed(
        event_type: str, obj: dict, event_id: str = "evt_1", secret: str | None = None
    ) -> tuple[bytes, dict[str, str]]:
        payload = stripe_event(event_type, obj, event_id)
        return payload, {
            "Stripe-Signature": stripe_signature(payload, secret),
            "Content-Type": "application/json",
        }

    return _signed
