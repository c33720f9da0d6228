"""Inventory ledger.

Authoritative per-product stock counter. Stock is never assigned during
checkout flows: it only moves through a conditional decrement that the
database evaluates atomically, or through an additive increment.
"""

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.domain.value_objects import ProductSnapshot
from storefront.infrastructure.models import ProductModel

logger = structlog.get_logger()


class InventoryLedger:
    """Stock operations bound to the caller's database session.

    All operations join the session's current transaction, so they commit
    or roll back together with the rest of the unit of work.

    Example usage:
        async with factory() as session, session.begin():
            ledger = InventoryLedger(session)
            if not await ledger.conditional_decrement(product_id, 2):
                raise ConcurrentStockConflictError(product_id, 2)
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def find_by_id(self, product_id: str) -> ProductSnapshot | None:
        """Read the current state of a product.

        Args:
            product_id: Product ID.

        Returns:
            ProductSnapshot if found, None otherwise.
        """
        query = (
            select(ProductModel)
            .where(ProductModel.id == product_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        product = result.scalar_one_or_none()
        if product is None:
            return None

        return ProductSnapshot(
            product_id=product.id,
            title=product.title,
            price_cents=product.price_cents,
            stock=product.stock,
            thumbnail=product.thumbnail,
        )

    async def conditional_decrement(self, product_id: str, quantity: int) -> bool:
        """Decrement stock only if it still covers the quantity.

        Args:
            product_id: Product ID.
            quantity: Units to take.

        Returns:
            True if exactly one row was decremented.
        """
        stmt = (
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock >= quantity)
            .values(stock=ProductModel.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        decremented = result.rowcount == 1

        if not decremented:
            logger.warning(
                "Conditional stock decrement matched no row",
                product_id=product_id,
                quantity=quantity,
            )
        return decremented

    async def increment(self, product_id: str, quantity: int) -> bool:
        """Add units back to stock.

        Args:
            product_id: Product ID.
            quantity: Units to restore.

        Returns:
            True if the product exists and was incremented.
        """
        stmt = (
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .values(stock=ProductModel.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            logger.warning(
                "Stock restore skipped for missing product",
                product_id=product_id,
                quantity=quantity,
            )
            return False
        return True

    async def restore(self, quantities: dict[str, int]) -> None:
        """Increment stock for every product in a quantity map.

        Rows are updated in product id order, the order checkout decrements
        them in, so two transactions never wait on each other's row locks
        in opposite orders.

        Args:
            quantities: Mapping of product id to units to restore.
        """
        for product_id, quantity in sorted(quantities.items()):
            await self.increment(product_id, quantity)
