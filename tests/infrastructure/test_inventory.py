"""Tests for the inventory ledger against SQLite."""

from storefront.infrastructure.inventory import InventoryLedger


class RecordingLedger(InventoryLedger):
    """Ledger that records the order stock rows are incremented in."""

    def __init__(self, session) -> None:
        super().__init__(session)
        self.incremented: list[str] = []

    async def increment(self, product_id: str, quantity: int) -> bool:
        self.incremented.append(product_id)
        return await super().increment(product_id, quantity)


class TestInventoryLedger:
    """Tests for InventoryLedger stock updates."""

    async def test_conditional_decrement_refuses_to_oversell(
        self, session_factory, seed_product, stock_of
    ) -> None:
        await seed_product("mug", stock=2)

        async with session_factory.begin() as session:
            ledger = InventoryLedger(session)
            assert await ledger.conditional_decrement("mug", 2)
            assert not await ledger.conditional_decrement("mug", 1)

        assert await stock_of("mug") == 0

    async def test_restore_increments_in_product_id_order(
        self, session_factory, seed_product, stock_of
    ) -> None:
        for product_id in ("zeta", "alpha", "mid"):
            await seed_product(product_id, stock=1)

        async with session_factory.begin() as session:
            ledger = RecordingLedger(session)
            await ledger.restore({"zeta": 1, "alpha": 2, "mid": 3})

        assert ledger.incremented == ["alpha", "mid", "zeta"]
        assert await stock_of("alpha") == 3
        assert await stock_of("mid") == 4
        assert await stock_of("zeta") == 2

    async def test_restore_skips_missing_product(
        self, session_factory, seed_product, stock_of
    ) -> None:
        await seed_product("mug", stock=1)

        async with session_factory.begin() as session:
            await InventoryLedger(session).restore({"gone": 1, "mug": 1})

        assert await stock_of("mug") == 2
