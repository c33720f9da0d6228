"""Repositories for carts, orders and payment events.

Each repository wraps an AsyncSession owned by the caller and maps between
ORM rows and domain aggregates. Repositories flush but never commit; the
application service owns the transaction boundary.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from storefront.domain.entities import Cart, CartItem, Order, OrderItem, PaymentRecord
from storefront.domain.exceptions import ConcurrentUpdateError
from storefront.domain.state_machines import OrderStatus, PaymentStatus
from storefront.infrastructure.models import (
    CartItemModel,
    CartModel,
    OrderItemModel,
    OrderModel,
    OrderStatusHistoryModel,
    PaymentEventModel,
)

logger = structlog.get_logger()

# Outcome of events held until their order can be found
DEFERRED_OUTCOME = "deferred"


# ============================================================================
# Mapping
# ============================================================================


def cart_from_model(model: CartModel) -> Cart:
    """Build a Cart aggregate from its row."""
    return Cart(
        id=model.id,
        owner_id=model.owner_id,
        items=[
            CartItem(
                id=row.id,
                product_id=row.product_id,
                title=row.title,
                price_cents=row.price_cents,
                quantity=row.quantity,
                selected_options=dict(row.selected_options or {}),
                thumbnail=row.thumbnail,
            )
            for row in model.items
        ],
        version=model.version,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def order_from_model(model: OrderModel) -> Order:
    """Build an Order aggregate from its row."""
    return Order(
        id=model.id,
        owner_id=model.owner_id,
        items=tuple(
            OrderItem(
                product_id=row.product_id,
                title=row.title,
                price_cents=row.price_cents,
                quantity=row.quantity,
                selected_options=dict(row.selected_options or {}),
                thumbnail=row.thumbnail,
            )
            for row in model.items
        ),
        status=OrderStatus(model.status),
        payment=PaymentRecord(
            status=PaymentStatus(model.payment_status),
            gateway=model.payment_gateway,
            transaction_id=model.transaction_id,
            session_id=model.session_id,
            raw=model.payment_raw,
        ),
        metadata=dict(model.checkout_metadata or {}),
        version=model.version,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


# ============================================================================
# Cart Repository
# ============================================================================


class CartRepository:
    """Repository for Cart aggregates, one per owner."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def _get_model(self, owner_id: str) -> CartModel | None:
        query = select(CartModel).where(CartModel.owner_id == owner_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_owner(self, owner_id: str) -> Cart | None:
        """Load the cart of an owner.

        Args:
            owner_id: Owning user id.

        Returns:
            Cart if one exists, None otherwise.
        """
        model = await self._get_model(owner_id)
        return cart_from_model(model) if model else None

    async def get_or_create(self, owner_id: str) -> Cart:
        """Load the owner's cart, creating it on first access.

        Creation runs in a savepoint; when a concurrent request created the
        same owner's cart first, the unique constraint fires and the row
        that won is loaded instead.

        Args:
            owner_id: Owning user id.

        Returns:
            The single cart for this owner.
        """
        cart = await self.get_by_owner(owner_id)
        if cart is not None:
            return cart

        cart = Cart.create(owner_id)
        try:
            async with self.session.begin_nested():
                self.session.add(
                    CartModel(
                        id=cart.id,
                        owner_id=owner_id,
                        version=cart.version,
                        created_at=cart.created_at,
                        updated_at=cart.updated_at,
                        items=[],
                    )
                )
        except IntegrityError:
            logger.info("Cart created concurrently, loading winner", owner_id=owner_id)
            existing = await self.get_by_owner(owner_id)
            if existing is None:
                raise
            return existing

        logger.info("Cart created", cart_id=cart.id, owner_id=owner_id)
        return cart

    async def save(self, cart: Cart) -> None:
        """Persist cart lines, inserting, updating and deleting as needed.

        The update is conditional on the version the cart row had when this
        session loaded it.

        Args:
            cart: Cart aggregate to save.

        Raises:
            ConcurrentUpdateError: If another transaction saved the cart first.
        """
        model = await self._get_model(cart.owner_id)
        if model is None:
            model = CartModel(id=cart.id, owner_id=cart.owner_id, items=[])
            self.session.add(model)

        existing = {row.id: row for row in model.items}
        rows: list[CartItemModel] = []
        for position, item in enumerate(cart.items):
            row = existing.get(item.id) or CartItemModel(id=item.id, cart_id=cart.id)
            row.product_id = item.product_id
            row.title = item.title
            row.price_cents = item.price_cents
            row.quantity = item.quantity
            row.selected_options = dict(item.selected_options)
            row.thumbnail = item.thumbnail
            row.position = position
            rows.append(row)

        model.items = rows
        model.version = cart.version
        model.updated_at = cart.updated_at
        try:
            await self.session.flush()
        except StaleDataError as e:
            logger.info("Cart saved concurrently", cart_id=cart.id, owner_id=cart.owner_id)
            raise ConcurrentUpdateError("Cart", cart.id, 1) from e


# ============================================================================
# Order Repository
# ============================================================================


class OrderRepository:
    """Repository for Order aggregates.

    Status changes are written with :meth:`save_transition`, a
    compare-and-set on the ``(status, payment_status)`` pair.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def add(self, order: Order, currency: str = "usd") -> None:
        """Insert a new order with its item snapshot.

        Args:
            order: Order to insert.
            currency: Currency the order is priced in.
        """
        model = OrderModel(
            id=order.id,
            owner_id=order.owner_id,
            status=order.status.value,
            sub_total_cents=order.sub_total_cents,
            currency=currency,
            checkout_metadata=dict(order.metadata),
            payment_status=order.payment.status.value,
            payment_gateway=order.payment.gateway,
            transaction_id=order.payment.transaction_id,
            session_id=order.payment.session_id,
            payment_raw=order.payment.raw,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at,
            items=[
                OrderItemModel(
                    product_id=item.product_id,
                    title=item.title,
                    price_cents=item.price_cents,
                    quantity=item.quantity,
                    line_total_cents=item.line_total_cents,
                    selected_options=dict(item.selected_options),
                    thumbnail=item.thumbnail,
                    position=position,
                )
                for position, item in enumerate(order.items)
            ],
        )
        self.session.add(model)
        await self.session.flush()

    async def _find_one(self, *criteria: Any) -> Order | None:
        query = (
            select(OrderModel)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return order_from_model(model) if model else None

    async def get(self, order_id: str) -> Order | None:
        """Get order by ID."""
        return await self._find_one(OrderModel.id == order_id)

    async def get_by_session_id(self, session_id: str) -> Order | None:
        """Get order by gateway checkout session ID."""
        return await self._find_one(OrderModel.session_id == session_id)

    async def get_by_transaction_id(self, transaction_id: str) -> Order | None:
        """Get order by gateway transaction (payment intent) ID."""
        return await self._find_one(OrderModel.transaction_id == transaction_id)

    async def list_for_owner(
        self, owner_id: str, status: OrderStatus | None = None
    ) -> list[Order]:
        """List an owner's orders, newest first.

        Args:
            owner_id: Owning user id.
            status: Optional status filter.

        Returns:
            Matching orders.
        """
        query = select(OrderModel).where(OrderModel.owner_id == owner_id)
        if status is not None:
            query = query.where(OrderModel.status == status.value)
        query = query.order_by(OrderModel.created_at.desc(), OrderModel.id)

        result = await self.session.execute(query)
        return [order_from_model(model) for model in result.scalars().all()]

    async def attach_session(self, order: Order) -> None:
        """Store the gateway session id recorded on the order."""
        stmt = (
            update(OrderModel)
            .where(OrderModel.id == order.id)
            .values(session_id=order.payment.session_id, updated_at=order.updated_at)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def save_transition(
        self,
        order: Order,
        expected: tuple[OrderStatus, PaymentStatus],
    ) -> bool:
        """Write the order's new state if the stored state is still ``expected``.

        Args:
            order: Order carrying the new status, payment status and payment data.
            expected: (status, payment status) the order was read in.

        Returns:
            True if the row was updated, False if another writer got there first.
        """
        expected_status, expected_payment = expected
        stmt = (
            update(OrderModel)
            .where(
                OrderModel.id == order.id,
                OrderModel.status == expected_status.value,
                OrderModel.payment_status == expected_payment.value,
            )
            .values(
                status=order.status.value,
                payment_status=order.payment.status.value,
                transaction_id=order.payment.transaction_id,
                payment_raw=order.payment.raw,
                version=OrderModel.version + 1,
                updated_at=order.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def claim_refund(self, order_id: str, claimed_at: datetime) -> bool:
        """Mark a paid order as having a refund in flight.

        Only one caller can hold the claim; it is cleared by
        :meth:`release_refund_claim` when the gateway refuses the refund.

        Args:
            order_id: Order to claim.
            claimed_at: When the refund was requested.

        Returns:
            True if the claim was taken, False if the order is not paid or
            another refund already holds it.
        """
        stmt = (
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status == PaymentStatus.PAID.value,
                OrderModel.refund_requested_at.is_(None),
            )
            .values(refund_requested_at=claimed_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def release_refund_claim(self, order_id: str) -> None:
        """Clear a refund claim so the refund can be requested again."""
        stmt = (
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(refund_requested_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def record_history(
        self,
        order: Order,
        previous: tuple[OrderStatus, PaymentStatus] | None,
        actor: str,
        reason: str | None = None,
    ) -> None:
        """Append a status history row for the order's current state.

        Args:
            order: Order after the transition.
            previous: State before the transition, None on creation.
            actor: Who caused the transition (user id, "gateway", "system").
            reason: Optional free-text reason.
        """
        self.session.add(
            OrderStatusHistoryModel(
                order_id=order.id,
                from_status=previous[0].value if previous else None,
                to_status=order.status.value,
                from_payment_status=previous[1].value if previous else None,
                to_payment_status=order.payment.status.value,
                actor=actor,
                reason=reason,
            )
        )
        await self.session.flush()

    async def list_history(self, order_id: str) -> list[dict[str, Any]]:
        """Get the status history of an order, oldest first."""
        query = (
            select(OrderStatusHistoryModel)
            .where(OrderStatusHistoryModel.order_id == order_id)
            .order_by(OrderStatusHistoryModel.created_at, OrderStatusHistoryModel.id)
        )
        result = await self.session.execute(query)
        return [
            {
                "from_status": row.from_status,
                "to_status": row.to_status,
                "from_payment_status": row.from_payment_status,
                "to_payment_status": row.to_payment_status,
                "actor": row.actor,
                "reason": row.reason,
                "created_at": row.created_at,
            }
            for row in result.scalars().all()
        ]


# ============================================================================
# Payment Event Log
# ============================================================================


class PaymentEventLog:
    """Log of gateway events already applied, for redelivery detection.

    Refund events that arrive before the payment they refund are kept with
    outcome ``deferred`` along with their payload until the payment lands.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize event log with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def seen(self, event_id: str) -> bool:
        """Check if an event was already recorded.

        Args:
            event_id: Gateway event id.

        Returns:
            True if the event exists in the log.
        """
        query = select(PaymentEventModel.event_id).where(PaymentEventModel.event_id == event_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none() is not None

    async def record(
        self,
        event_id: str,
        event_type: str,
        order_id: str | None,
        outcome: str,
        transaction_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        """Record an event in the current transaction.

        Args:
            event_id: Gateway event id.
            event_type: Raw gateway event type.
            order_id: Order the event resolved to, if any.
            outcome: Reconciliation outcome.
            transaction_id: Gateway transaction the event refers to, kept
                for deferred events.
            payload: Raw event object, kept for deferred events.
        """
        self.session.add(
            PaymentEventModel(
                event_id=event_id,
                event_type=event_type,
                order_id=order_id,
                outcome=outcome,
                transaction_id=transaction_id,
                payload=payload,
            )
        )
        await self.session.flush()

    async def deferred_for(self, transaction_id: str) -> list[dict[str, Any]]:
        """List deferred events waiting on a gateway transaction, oldest first.

        Args:
            transaction_id: Gateway transaction (payment intent) id.

        Returns:
            Event id, type and payload of each deferred event.
        """
        query = (
            select(PaymentEventModel)
            .where(
                PaymentEventModel.transaction_id == transaction_id,
                PaymentEventModel.outcome == DEFERRED_OUTCOME,
            )
            .order_by(PaymentEventModel.received_at, PaymentEventModel.event_id)
        )
        result = await self.session.execute(query)
        return [
            {"event_id": row.event_id, "event_type": row.event_type, "payload": row.payload}
            for row in result.scalars().all()
        ]

    async def resolve(self, event_id: str, order_id: str, outcome: str) -> None:
        """Attach a deferred event to the order it was finally applied to."""
        stmt = (
            update(PaymentEventModel)
            .where(PaymentEventModel.event_id == event_id)
            .values(order_id=order_id, outcome=outcome)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
