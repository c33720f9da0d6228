"""Cart application service.

Each operation loads the caller's cart, applies one aggregate mutation and
saves it inside a single database transaction. Product price and title
are snapshotted from the inventory ledger at the time of the call.

A save that loses to a concurrent save of the same cart is retried from a
fresh read.
"""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.entities import Cart, CartItem, validate_quantity
from storefront.domain.exceptions import ConcurrentUpdateError, ProductNotFoundError
from storefront.domain.value_objects import CallerIdentity
from storefront.infrastructure.inventory import InventoryLedger
from storefront.infrastructure.repositories import CartRepository

logger = structlog.get_logger()

Mutation = Callable[[AsyncSession, Cart], Awaitable[Any]]


class CartService:
    """Service for cart operations of the calling user."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger_factory: Callable[[AsyncSession], InventoryLedger] = InventoryLedger,
        max_attempts: int = 3,
    ) -> None:
        """Initialize cart service.

        Args:
            session_factory: Factory for database sessions.
            ledger_factory: Builds the inventory ledger for a session.
            max_attempts: Save attempts before a concurrent update is reported.
        """
        self.session_factory = session_factory
        self.ledger_factory = ledger_factory
        self.max_attempts = max_attempts

    async def _mutate(
        self, identity: CallerIdentity, mutation: Mutation
    ) -> tuple[Cart, Any]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.session_factory.begin() as session:
                    carts = CartRepository(session)
                    cart = await carts.get_or_create(identity.user_id)
                    result = await mutation(session, cart)
                    await carts.save(cart)
                return cart, result
            except ConcurrentUpdateError:
                logger.info(
                    "Cart changed concurrently, retrying",
                    owner_id=identity.user_id,
                    attempt=attempt,
                )

        logger.error(
            "Cart update gave up after concurrent updates",
            owner_id=identity.user_id,
            attempts=self.max_attempts,
        )
        raise ConcurrentUpdateError("Cart", identity.user_id, self.max_attempts)

    async def get_or_create(self, identity: CallerIdentity) -> Cart:
        """Get the caller's cart, creating it on first access.

        Args:
            identity: Calling user.

        Returns:
            The caller's cart.
        """
        async with self.session_factory.begin() as session:
            return await CartRepository(session).get_or_create(identity.user_id)

    async def add_item(
        self,
        identity: CallerIdentity,
        product_id: str,
        quantity: int = 1,
        selected_options: dict[str, Any] | None = None,
    ) -> Cart:
        """Add a product to the caller's cart.

        Args:
            identity: Calling user.
            product_id: Product to add.
            quantity: Units to add, a positive integer.
            selected_options: Chosen product options.

        Returns:
            Updated cart.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer.
            ProductNotFoundError: If the product does not exist.
            ConcurrentUpdateError: If the cart kept changing underneath.
        """
        validate_quantity(quantity)

        async def mutation(session: AsyncSession, cart: Cart) -> CartItem:
            product = await self.ledger_factory(session).find_by_id(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            return cart.add_item(product, quantity, selected_options)

        cart, item = await self._mutate(identity, mutation)

        logger.info(
            "Cart item added",
            cart_id=cart.id,
            item_id=item.id,
            product_id=product_id,
            quantity=item.quantity,
            sub_total_cents=cart.sub_total_cents,
        )
        return cart

    async def set_item_quantity(
        self, identity: CallerIdentity, item_id: str, quantity: int
    ) -> Cart:
        """Replace an item's quantity; zero or less removes the item.

        Raises:
            CartItemNotFoundError: If the item is not in the cart.
            InvalidQuantityError: If quantity is not an integer.
        """

        async def mutation(session: AsyncSession, cart: Cart) -> None:
            cart.set_item_quantity(item_id, quantity)

        cart, _ = await self._mutate(identity, mutation)

        logger.info(
            "Cart item quantity set",
            cart_id=cart.id,
            item_id=item_id,
            quantity=quantity,
            sub_total_cents=cart.sub_total_cents,
        )
        return cart

    async def remove_item(self, identity: CallerIdentity, item_id: str) -> Cart:
        """Remove an item from the caller's cart.

        Raises:
            CartItemNotFoundError: If the item is not in the cart.
        """

        async def mutation(session: AsyncSession, cart: Cart) -> None:
            cart.remove_item(item_id)

        cart, _ = await self._mutate(identity, mutation)

        logger.info("Cart item removed", cart_id=cart.id, item_id=item_id)
        return cart

    async def clear(self, identity: CallerIdentity) -> Cart:
        """Remove every item from the caller's cart."""

        async def mutation(session: AsyncSession, cart: Cart) -> int:
            return cart.clear()

        cart, removed = await self._mutate(identity, mutation)

        logger.info("Cart cleared", cart_id=cart.id, removed=removed)
        return cart
