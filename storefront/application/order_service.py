"""Order application service.

Read access to orders for their owners, and the admin-only fulfillment
steps that follow a successful payment.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.entities import Order
from storefront.domain.exceptions import (
    AuthorizationError,
    ConcurrentUpdateError,
    OrderNotFoundError,
)
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import CallerIdentity
from storefront.infrastructure.repositories import OrderRepository

logger = structlog.get_logger()


@dataclass
class OrderDetails:
    """An order together with its status history."""

    order: Order
    history: list[dict[str, Any]] = field(default_factory=list)


class OrderService:
    """Service for order queries and fulfillment."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize order service.

        Args:
            session_factory: Factory for database sessions.
        """
        self.session_factory = session_factory

    async def list_orders(
        self, identity: CallerIdentity, status: OrderStatus | None = None
    ) -> list[Order]:
        """List the caller's orders, newest first.

        Args:
            identity: Calling user.
            status: Optional status filter.

        Returns:
            The caller's orders.
        """
        async with self.session_factory() as session:
            return await OrderRepository(session).list_for_owner(identity.user_id, status)

    async def get_order(self, identity: CallerIdentity, order_id: str) -> OrderDetails:
        """Get one order with its status history.

        Raises:
            OrderNotFoundError: If the order does not exist.
            AuthorizationError: If the caller is neither the owner nor an admin.
        """
        async with self.session_factory() as session:
            orders = OrderRepository(session)
            order = await orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if not (identity.owns(order.owner_id) or identity.is_admin):
                raise AuthorizationError("Order", order_id, identity.user_id)
            history = await orders.list_history(order_id)

        return OrderDetails(order=order, history=history)

    async def advance_fulfillment(
        self,
        identity: CallerIdentity,
        order_id: str,
        target: OrderStatus,
    ) -> Order:
        """Move a paid order to its next fulfillment status.

        Args:
            identity: Calling user; must be an admin.
            order_id: Order to advance.
            target: ``shipped`` or ``delivered``.

        Returns:
            Updated order.

        Raises:
            AuthorizationError: If the caller is not an admin.
            OrderNotFoundError: If the order does not exist.
            InvalidStateTransitionError: If target is not the next step.
            ConcurrentUpdateError: If the order changed while advancing it.
        """
        if not identity.is_admin:
            raise AuthorizationError("Order", order_id, identity.user_id)

        async with self.session_factory.begin() as session:
            orders = OrderRepository(session)
            order = await orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)

            previous = order.state
            order.advance_fulfillment(target)

            if not await orders.save_transition(order, previous):
                raise ConcurrentUpdateError("Order", order_id, 1)
            await orders.record_history(order, previous, actor=identity.user_id, reason="fulfillment")

        logger.info(
            "Order fulfillment advanced",
            order_id=order_id,
            from_status=previous[0].value,
            to_status=order.status.value,
            actor=identity.user_id,
        )
        return order
