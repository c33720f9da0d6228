"""Checkout application service.

Turns the caller's cart into a pending order in one database transaction:

1. Load the cart; an absent or empty cart cannot be checked out.
2. Re-read live stock and price for every product in the cart.
3. Abort if any product cannot cover the requested quantity.
4. Reprice the cart from the live prices and snapshot it into an Order.
5. Conditionally decrement stock per product; a decrement that matches no
   row means a concurrent checkout won the race, and everything rolls back.
6. Empty the cart.

The conditional decrement at step 5 is the only stock decrement an order
ever gets. Payment confirmation later leaves stock untouched.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.entities import Order
from storefront.domain.exceptions import (
    ConcurrentStockConflictError,
    EmptyCartError,
    OutOfStockError,
    ProductNotFoundError,
)
from storefront.domain.value_objects import CallerIdentity, ProductSnapshot
from storefront.infrastructure.inventory import InventoryLedger
from storefront.infrastructure.repositories import CartRepository, OrderRepository

logger = structlog.get_logger()


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class CheckoutResult:
    """Result of a successful checkout."""

    order: Order

    @property
    def order_id(self) -> str:
        return self.order.id


# ============================================================================
# Checkout Service
# ============================================================================


class CheckoutService:
    """Orchestrates the cart-to-order checkout."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger_factory: Callable[[AsyncSession], InventoryLedger] = InventoryLedger,
        currency: str = "usd",
    ) -> None:
        """Initialize checkout service.

        Args:
            session_factory: Factory for database sessions.
            ledger_factory: Builds the inventory ledger for a session.
            currency: Currency orders are priced in.
        """
        self.session_factory = session_factory
        self.ledger_factory = ledger_factory
        self.currency = currency

    async def checkout(
        self,
        identity: CallerIdentity,
        payment_hint: str = "stripe",
        metadata: dict[str, Any] | None = None,
    ) -> CheckoutResult:
        """Check out the caller's cart atomically.

        Args:
            identity: Calling user.
            payment_hint: Gateway identifier recorded on the payment.
            metadata: Free-form checkout metadata stored on the order.

        Returns:
            CheckoutResult with the new order in (created, pending).

        Raises:
            EmptyCartError: If the caller has no cart or it is empty.
            ProductNotFoundError: If a cart product no longer exists.
            OutOfStockError: If live stock cannot cover a quantity.
            ConcurrentStockConflictError: If a concurrent checkout took the stock.
        """
        async with self.session_factory.begin() as session:
            order = await self.place_order(session, identity.user_id, payment_hint, metadata)

        return CheckoutResult(order=order)

    async def place_order(
        self,
        session: AsyncSession,
        owner_id: str,
        payment_hint: str = "stripe",
        metadata: dict[str, Any] | None = None,
    ) -> Order:
        """Run the checkout steps inside the caller's transaction.

        The caller owns the transaction; any exception raised here must roll
        it back so no order, stock change or cart change survives.

        Args:
            session: Session with an open transaction.
            owner_id: Owner of the cart to check out.
            payment_hint: Gateway identifier recorded on the payment.
            metadata: Free-form checkout metadata stored on the order.

        Returns:
            The new order.
        """
        carts = CartRepository(session)
        orders = OrderRepository(session)
        ledger = self.ledger_factory(session)

        cart = await carts.get_by_owner(owner_id)
        if cart is None or cart.is_empty:
            logger.info("Checkout rejected for empty cart", owner_id=owner_id)
            raise EmptyCartError(owner_id)

        requested = cart.quantities_by_product()

        # Revalidate stock and price against live product state
        products: dict[str, ProductSnapshot] = {}
        for product_id, quantity in requested.items():
            product = await ledger.find_by_id(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            if not product.has_stock_for(quantity):
                logger.info(
                    "Checkout rejected for insufficient stock",
                    owner_id=owner_id,
                    product_id=product_id,
                    requested=quantity,
                    available=product.stock,
                )
                raise OutOfStockError(product_id, product.title, quantity, product.stock)
            products[product_id] = product

        for product in products.values():
            cart.reprice(product)

        order = Order.create_from_cart(cart, gateway=payment_hint, metadata=metadata)
        await orders.add(order, currency=self.currency)
        await orders.record_history(order, None, actor=owner_id, reason="checkout")

        # Product id order, matching InventoryLedger.restore
        for product_id, quantity in sorted(requested.items()):
            if not await ledger.conditional_decrement(product_id, quantity):
                raise ConcurrentStockConflictError(product_id, quantity)

        cart.clear()
        await carts.save(cart)

        logger.info(
            "Order placed",
            order_id=order.id,
            order_number=order.order_number,
            owner_id=owner_id,
            sub_total_cents=order.sub_total_cents,
            item_count=order.item_count,
        )
        return order
