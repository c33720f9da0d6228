"""Tests for the checkout application service.

Covers:
- Successful checkout reserving stock and emptying the cart
- Rejections that leave stock, cart and orders unchanged
- Two checkouts racing for the last unit of stock
"""

import pytest
from sqlalchemy import func, select

from storefront.application.cart_service import CartService
from storefront.application.checkout_service import CheckoutService
from storefront.domain import OrderStatus, PaymentStatus
from storefront.domain.exceptions import (
    ConcurrentStockConflictError,
    EmptyCartError,
    OutOfStockError,
    ProductNotFoundError,
)
from storefront.infrastructure.inventory import InventoryLedger
from storefront.infrastructure.models import OrderModel, OrderStatusHistoryModel, ProductModel


@pytest.fixture
def carts(session_factory) -> CartService:
    return CartService(session_factory)


@pytest.fixture
def service(session_factory) -> CheckoutService:
    return CheckoutService(session_factory)


async def count_orders(session_factory, owner_id: str | None = None) -> int:
    query = select(func.count()).select_from(OrderModel)
    if owner_id is not None:
        query = query.where(OrderModel.owner_id == owner_id)
    async with session_factory() as session:
        return (await session.execute(query)).scalar_one()


class TestCheckout:
    """Tests for CheckoutService.checkout."""

    async def test_checkout_reserves_stock_and_empties_cart(
        self, service, carts, seed_product, stock_of, alice
    ) -> None:
        """Cart {P, 20.00, qty 2} with stock 5 yields a 40.00 order and stock 3."""
        await seed_product("p", price_cents=2000, stock=5)
        await carts.add_item(alice, "p", 2)

        result = await service.checkout(alice)

        order = result.order
        assert order.sub_total_cents == 4000
        assert order.state == (OrderStatus.CREATED, PaymentStatus.PENDING)
        assert order.owner_id == alice.user_id
        assert await stock_of("p") == 3
        assert (await carts.get_or_create(alice)).is_empty

    async def test_checkout_with_insufficient_stock_changes_nothing(
        self, service, carts, seed_product, stock_of, session_factory, alice
    ) -> None:
        """Same cart with stock 1 fails; stock stays 1 and the cart keeps its item."""
        await seed_product("p", price_cents=2000, stock=1)
        await carts.add_item(alice, "p", 2)

        with pytest.raises(OutOfStockError) as exc_info:
            await service.checkout(alice)

        assert exc_info.value.details["available"] == 1
        assert exc_info.value.details["requested"] == 2
        assert await stock_of("p") == 1
        cart = await carts.get_or_create(alice)
        assert cart.items[0].quantity == 2
        assert await count_orders(session_factory) == 0

    async def test_quantities_are_summed_across_option_lines(
        self, service, carts, seed_product, stock_of, alice
    ) -> None:
        """Two option variants of one product are checked against stock together."""
        await seed_product("shirt", price_cents=1500, stock=3)
        await carts.add_item(alice, "shirt", 2, {"size": "M"})
        await carts.add_item(alice, "shirt", 2, {"size": "L"})

        with pytest.raises(OutOfStockError):
            await service.checkout(alice)

        assert await stock_of("shirt") == 3

    async def test_empty_cart_rejected(self, service, carts, alice) -> None:
        await carts.get_or_create(alice)

        with pytest.raises(EmptyCartError):
            await service.checkout(alice)

    async def test_missing_cart_rejected(self, service, alice) -> None:
        with pytest.raises(EmptyCartError):
            await service.checkout(alice)

    async def test_deleted_product_rejected(
        self, service, carts, seed_product, session_factory, alice
    ) -> None:
        await seed_product("p", stock=5)
        await carts.add_item(alice, "p", 1)
        async with session_factory.begin() as session:
            await session.delete(await session.get(ProductModel, "p"))

        with pytest.raises(ProductNotFoundError):
            await service.checkout(alice)

    async def test_checkout_reprices_from_live_product(
        self, service, carts, seed_product, session_factory, alice
    ) -> None:
        """The order uses the price at checkout, not the price when added."""
        await seed_product("p", price_cents=2000, stock=5)
        await carts.add_item(alice, "p", 1)
        async with session_factory.begin() as session:
            product = await session.get(ProductModel, "p")
            product.price_cents = 2500

        result = await service.checkout(alice)

        assert result.order.items[0].price_cents == 2500
        assert result.order.sub_total_cents == 2500

    async def test_checkout_records_metadata_and_history(
        self, service, carts, seed_product, session_factory, alice
    ) -> None:
        await seed_product("p", stock=5)
        await carts.add_item(alice, "p", 1)

        result = await service.checkout(alice, metadata={"email": "alice@example.com"})

        async with session_factory() as session:
            model = await session.get(OrderModel, result.order_id)
            history = (
                await session.execute(
                    select(OrderStatusHistoryModel).where(
                        OrderStatusHistoryModel.order_id == result.order_id
                    )
                )
            ).scalars().all()

        assert model.checkout_metadata == {"email": "alice@example.com"}
        assert [(row.from_status, row.to_status) for row in history] == [(None, "created")]


class InterleavingLedger(InventoryLedger):
    """Ledger that lets another checkout run right after the first stock read."""

    def __init__(self, session, on_first_read) -> None:
        super().__init__(session)
        self.on_first_read = on_first_read

    async def find_by_id(self, product_id: str):
        product = await super().find_by_id(product_id)
        callback, self.on_first_read = self.on_first_read, None
        if callback is not None:
            await callback()
        return product


class TestConcurrentCheckout:
    """Two checkouts racing for the last unit."""

    async def test_last_unit_goes_to_exactly_one_checkout(
        self, session_factory, carts, seed_product, stock_of, alice, bob
    ) -> None:
        """A's stale read passes validation but its conditional decrement fails."""
        await seed_product("p", price_cents=2000, stock=1)
        await carts.add_item(alice, "p", 1)
        await carts.add_item(bob, "p", 1)

        bob_checkout = CheckoutService(session_factory)
        bob_result = {}

        async def run_bob() -> None:
            bob_result["order"] = (await bob_checkout.checkout(bob)).order

        alice_checkout = CheckoutService(
            session_factory,
            ledger_factory=lambda session: InterleavingLedger(session, run_bob),
        )

        with pytest.raises(ConcurrentStockConflictError):
            await alice_checkout.checkout(alice)

        assert bob_result["order"].state == (OrderStatus.CREATED, PaymentStatus.PENDING)
        assert await stock_of("p") == 0
        assert await count_orders(session_factory, alice.user_id) == 0
        assert await count_orders(session_factory, bob.user_id) == 1
        assert len((await carts.get_or_create(alice)).items) == 1
        assert (await carts.get_or_create(bob)).is_empty


class RecordingLedger(InventoryLedger):
    """Ledger that records the order stock rows are decremented in."""

    decremented: list[str] = []

    async def conditional_decrement(self, product_id: str, quantity: int) -> bool:
        self.decremented.append(product_id)
        return await super().conditional_decrement(product_id, quantity)


class TestLockOrdering:
    """Stock rows are taken in one global order."""

    async def test_decrements_follow_product_id_order(
        self, session_factory, carts, seed_product, stock_of, alice, monkeypatch
    ) -> None:
        await seed_product("zeta", price_cents=500, stock=3)
        await seed_product("alpha", price_cents=700, stock=3)
        await seed_product("mid", price_cents=900, stock=3)
        # Cart order differs from id order
        await carts.add_item(alice, "zeta", 1)
        await carts.add_item(alice, "mid", 1)
        await carts.add_item(alice, "alpha", 2)
        monkeypatch.setattr(RecordingLedger, "decremented", [])

        await CheckoutService(session_factory, ledger_factory=RecordingLedger).checkout(alice)

        assert RecordingLedger.decremented == ["alpha", "mid", "zeta"]
        assert await stock_of("alpha") == 1
        assert await stock_of("zeta") == 2
