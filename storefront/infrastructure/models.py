"""SQLAlchemy models for database tables.

Provides ORM models for products, carts, orders, order status history
and the payment event log.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.infrastructure.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Product Models
# ============================================================================


class ProductModel(Base):
    """Product with its authoritative stock counter.

    Stock is only changed through the inventory ledger's conditional
    decrement and additive increment; the check constraint is the last
    line of defence against negative stock.
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    thumbnail: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, title={self.title[:30]}, stock={self.stock})>"


# ============================================================================
# Cart Models
# ============================================================================


class CartModel(Base):
    """One cart per user; ``owner_id`` is unique.

    ``version`` is checked on every update: a flush against a row another
    transaction has since saved raises ``StaleDataError``.
    """

    __tablename__ = "carts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    items: Mapped[list["CartItemModel"]] = relationship(
        "CartItemModel",
        cascade="all, delete-orphan",
        order_by="CartItemModel.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}


class CartItemModel(Base):
    """A cart line with denormalized price and title snapshots."""

    __tablename__ = "cart_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    cart_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    selected_options: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    thumbnail: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),)


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    The payment sub-record is flattened into ``payment_*`` columns.
    ``transaction_id`` and ``session_id`` are unique so gateway events can
    be joined back to exactly one order.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="created", index=True)
    sub_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    checkout_metadata: Mapped[dict[str, Any]] = mapped_column(
        JsonType, nullable=False, default=dict
    )

    # Payment
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_gateway: Mapped[str] = mapped_column(String(50), nullable=False, default="stripe")
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    payment_raw: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    # Set while an explicit refund is in flight at the gateway
    refund_requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    items: Mapped[list["OrderItemModel"]] = relationship(
        "OrderItemModel",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
        lazy="selectin",
    )


class OrderItemModel(Base):
    """Order item model; an immutable snapshot of a cart line."""

    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    line_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    selected_options: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    thumbnail: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class OrderStatusHistoryModel(Base):
    """Audit trail of order and payment status transitions."""

    __tablename__ = "order_status_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    from_payment_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


# ============================================================================
# Payment Event Log
# ============================================================================


class PaymentEventModel(Base):
    """Gateway events already applied, keyed by the gateway event id.

    Rows are written in the same transaction as the transition they
    caused, so a redelivered event is detected exactly when its effect
    is visible.
    """

    __tablename__ = "payment_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    # Kept for refunds that arrive before the payment they refund
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
