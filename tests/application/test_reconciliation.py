"""Tests for payment reconciliation.

Covers:
- Success, failure and refund transitions with their stock effects
- Redelivered and reordered gateway events
- Explicit refunds
"""

import pytest
from sqlalchemy import select

from storefront.application.cart_service import CartService
from storefront.application.checkout_service import CheckoutService
from storefront.application.reconciliation import PaymentReconciler, ReconciliationOutcome
from storefront.domain import (
    ChargeRefunded,
    OrderStatus,
    PaymentFailed,
    PaymentStatus,
    PaymentSucceeded,
    UnhandledEvent,
)
from storefront.domain.exceptions import (
    ConcurrentUpdateError,
    InvalidStateError,
    OrderNotFoundError,
)
from storefront.infrastructure.models import PaymentEventModel
from storefront.infrastructure.repositories import OrderRepository


@pytest.fixture
def reconciler(session_factory) -> PaymentReconciler:
    return PaymentReconciler(session_factory)


@pytest.fixture
def place_order(session_factory, seed_product, alice):
    """Check out a 2 x 20.00 cart against stock 5; returns the order."""

    async def _place(stock: int = 5):
        await seed_product("p", price_cents=2000, stock=stock)
        await CartService(session_factory).add_item(alice, "p", 2)
        return (await CheckoutService(session_factory).checkout(alice)).order

    return _place


async def load_order(session_factory, order_id: str):
    async with session_factory() as session:
        return await OrderRepository(session).get(order_id)


def success(order_id: str, event_id: str = "evt_paid", payment_intent: str = "pi_1"):
    return PaymentSucceeded(
        event_id=event_id,
        event_type="checkout.session.completed",
        session_id="cs_1",
        order_id=order_id,
        payment_intent_id=payment_intent,
    )


def failure(order_id: str, event_id: str = "evt_failed"):
    return PaymentFailed(
        event_id=event_id,
        event_type="checkout.session.async_payment_failed",
        order_id=order_id,
        reason="card_declined",
    )


def refund(
    event_id: str = "evt_refund",
    payment_intent: str = "pi_1",
    amount: int = 4000,
    raw: dict | None = None,
):
    return ChargeRefunded(
        event_id=event_id,
        event_type="charge.refunded",
        payment_intent_id=payment_intent,
        amount_refunded_cents=amount,
        raw=raw if raw is not None else {"id": "ch_1", "payment_intent": payment_intent},
    )


class TestPaymentSucceeded:
    """Tests for applying payment success."""

    async def test_success_marks_order_paid_without_touching_stock(
        self, reconciler, place_order, stock_of, session_factory
    ) -> None:
        order = await place_order()
        assert await stock_of("p") == 3

        result = await reconciler.apply(success(order.id))

        assert result.outcome == ReconciliationOutcome.APPLIED
        stored = await load_order(session_factory, order.id)
        assert stored.state == (OrderStatus.PROCESSING, PaymentStatus.PAID)
        assert stored.payment.transaction_id == "pi_1"
        assert await stock_of("p") == 3

    async def test_redelivered_success_is_duplicate(
        self, reconciler, place_order, stock_of, session_factory
    ) -> None:
        """The same event twice decrements stock once and keeps (processing, paid)."""
        order = await place_order()

        await reconciler.apply(success(order.id))
        result = await reconciler.apply(success(order.id))

        assert result.outcome == ReconciliationOutcome.DUPLICATE
        stored = await load_order(session_factory, order.id)
        assert stored.state == (OrderStatus.PROCESSING, PaymentStatus.PAID)
        assert await stock_of("p") == 3

    async def test_second_success_event_for_paid_order_is_unchanged(
        self, reconciler, place_order, stock_of
    ) -> None:
        """completed and async_payment_succeeded both arrive for one session."""
        order = await place_order()

        await reconciler.apply(success(order.id, event_id="evt_a"))
        result = await reconciler.apply(success(order.id, event_id="evt_b"))

        assert result.outcome == ReconciliationOutcome.UNCHANGED
        assert await stock_of("p") == 3

    async def test_success_located_by_session_id(
        self, reconciler, place_order, session_factory
    ) -> None:
        order = await place_order()
        order.attach_session("cs_lookup")
        async with session_factory.begin() as session:
            await OrderRepository(session).attach_session(order)

        event = PaymentSucceeded(
            event_id="evt_s",
            event_type="checkout.session.completed",
            session_id="cs_lookup",
            payment_intent_id="pi_9",
        )
        result = await reconciler.apply(event)

        assert result.outcome == ReconciliationOutcome.APPLIED
        assert result.order_id == order.id

    async def test_success_for_unknown_order_is_ignored_and_logged(
        self, reconciler, session_factory
    ) -> None:
        result = await reconciler.apply(success("no-such-order", event_id="evt_unknown"))

        assert result.outcome == ReconciliationOutcome.IGNORED
        async with session_factory() as session:
            row = await session.get(PaymentEventModel, "evt_unknown")
        assert row.outcome == "ignored"

    async def test_success_after_cancellation_is_ignored(
        self, reconciler, place_order, stock_of, session_factory
    ) -> None:
        order = await place_order()
        await reconciler.apply(failure(order.id))

        result = await reconciler.apply(success(order.id))

        assert result.outcome == ReconciliationOutcome.IGNORED
        stored = await load_order(session_factory, order.id)
        assert stored.state == (OrderStatus.CANCELLED, PaymentStatus.FAILED)
        assert await stock_of("p") == 5


class TestPaymentFailed:
    """Tests for applying payment failure."""

    async def test_failure_cancels_and_restores_stock(
        self, reconciler, place_order, stock_of, session_factory
    ) -> None:
        order = await place_order()

        result = await reconciler.apply(failure(order.id))

        assert result.outcome == ReconciliationOutcome.APPLIED
        stored = await load_order(session_factory, order.id)
        assert stored.state == (OrderStatus.CANCELLED, PaymentStatus.FAILED)
        assert await stock_of("p") == 5

    async def test_repeated_failure_restores_once(
        self, reconciler, place_order, stock_of
    ) -> None:
        order = await place_order()

        await reconciler.apply(failure(order.id, event_id="evt_f1"))
        result = await reconciler.apply(failure(order.id, event_id="evt_f2"))

        assert result.outcome == ReconciliationOutcome.UNCHANGED
        assert await stock_of("p") == 5

    async def test_late_failure_after_payment_is_ignored(
        self, reconciler, place_order, stock_of, session_factory
    ) -> None:
        order = await place_order()
        await reconciler.apply(success(order.id))

        result = await reconciler.apply(failure(order.id))

        assert result.outcome == ReconciliationOutcome.IGNORED
        stored = await load_order(session_factory, order.id)
        assert stored.state == (OrderStatus.PROCESSING, PaymentStatus.PAID)
        assert await stock_of("p") == 3


class TestRefunds:
    """Tests for refund events and explicit refunds."""

    async def test_refund_event_restores_full_quantities(
        self, reconciler, place_order, stock_of, session_factory
    ) -> None:
        """Even a partial refund restores every ordered unit."""
        order = await place_order()
        await reconciler.apply(success(order.id))

        result = await reconciler.apply(refund(amount=100))

        assert result.outcome == ReconciliationOutcome.APPLIED
        stored = await load_order(session_factory, order.id)
        assert stored.state == (OrderStatus.REFUNDED, PaymentStatus.REFUNDED)
        assert await stock_of("p") == 5

    async def test_refund_event_stores_its_payload(
        self, reconciler, place_order, session_factory
    ) -> None:
        order = await place_order()
        await reconciler.apply(success(order.id))
        payload = {"id": "ch_9", "payment_intent": "pi_1", "amount_refunded": 4000}

        await reconciler.apply(refund(raw=payload))

        stored = await load_order(session_factory, order.id)
        assert stored.payment.raw == payload

    async def test_refund_before_payment_is_deferred(
        self, reconciler, place_order, stock_of, session_factory
    ) -> None:
        """A refund whose payment intent matches no order yet waits for it."""
        order = await place_order()

        result = await reconciler.apply(refund())

        assert result.outcome == ReconciliationOutcome.DEFERRED
        stored = await load_order(session_factory, order.id)
        assert stored.state == (OrderStatus.CREATED, PaymentStatus.PENDING)
        assert await stock_of("p") == 3
        async with session_factory() as session:
            row = await session.get(PaymentEventModel, "evt_refund")
        assert row.outcome == "deferred"
        assert row.transaction_id == "pi_1"

    async def test_deferred_refund_is_applied_when_payment_lands(
        self, reconciler, place_order, stock_of, session_factory
    ) -> None:
        """Refund delivered before success ends refunded with stock restored."""
        order = await place_order()
        payload = {"id": "ch_1", "payment_intent": "pi_1", "amount_refunded": 4000}
        await reconciler.apply(refund(raw=payload))

        result = await reconciler.apply(success(order.id))

        assert result.outcome == ReconciliationOutcome.APPLIED
        assert result.order.state == (OrderStatus.REFUNDED, PaymentStatus.REFUNDED)
        stored = await load_order(session_factory, order.id)
        assert stored.state == (OrderStatus.REFUNDED, PaymentStatus.REFUNDED)
        assert stored.payment.transaction_id == "pi_1"
        assert stored.payment.raw == payload
        assert await stock_of("p") == 5
        async with session_factory() as session:
            row = await session.get(PaymentEventModel, "evt_refund")
            history = await OrderRepository(session).list_history(order.id)
        assert row.outcome == "applied"
        assert row.order_id == order.id
        assert {entry["to_status"] for entry in history} == {"created", "processing", "refunded"}
        assert any(entry["reason"] == "charge.refunded (deferred)" for entry in history)

    async def test_redelivered_deferred_refund_is_duplicate(
        self, reconciler, place_order, stock_of
    ) -> None:
        order = await place_order()
        await reconciler.apply(refund())
        await reconciler.apply(success(order.id))

        result = await reconciler.apply(refund())

        assert result.outcome == ReconciliationOutcome.DUPLICATE
        assert await stock_of("p") == 5

    async def test_deferred_refund_for_other_payment_is_left_alone(
        self, reconciler, place_order, stock_of, session_factory
    ) -> None:
        order = await place_order()
        await reconciler.apply(refund(payment_intent="pi_other"))

        await reconciler.apply(success(order.id))

        stored = await load_order(session_factory, order.id)
        assert stored.state == (OrderStatus.PROCESSING, PaymentStatus.PAID)
        assert await stock_of("p") == 3

    async def test_explicit_refund(self, reconciler, place_order, stock_of, session_factory) -> None:
        order = await place_order()
        await reconciler.apply(success(order.id))

        result = await reconciler.apply_refund(order.id, actor="user-alice", reason="changed mind")

        assert result.outcome == ReconciliationOutcome.APPLIED
        assert result.order.state == (OrderStatus.REFUNDED, PaymentStatus.REFUNDED)
        assert await stock_of("p") == 5

    async def test_refund_webhook_after_explicit_refund_is_noop(
        self, reconciler, place_order, stock_of
    ) -> None:
        order = await place_order()
        await reconciler.apply(success(order.id))
        await reconciler.apply_refund(order.id, actor="user-alice")

        result = await reconciler.apply(refund())

        assert result.outcome == ReconciliationOutcome.UNCHANGED
        assert await stock_of("p") == 5

    async def test_explicit_refund_of_unpaid_order_raises(self, reconciler, place_order) -> None:
        order = await place_order()

        with pytest.raises(InvalidStateError):
            await reconciler.apply_refund(order.id, actor="admin")

    async def test_explicit_refund_of_missing_order_raises(self, reconciler) -> None:
        with pytest.raises(OrderNotFoundError):
            await reconciler.apply_refund("missing", actor="admin")


class TestReconciliationHistoryAndRetries:
    """Tests for status history and compare-and-set retries."""

    async def test_history_records_each_transition(
        self, reconciler, place_order, session_factory
    ) -> None:
        order = await place_order()
        await reconciler.apply(success(order.id))
        await reconciler.apply(refund())

        async with session_factory() as session:
            history = await OrderRepository(session).list_history(order.id)

        assert [(entry["from_status"], entry["to_status"]) for entry in history] == [
            (None, "created"),
            ("created", "processing"),
            ("processing", "refunded"),
        ]
        assert history[1]["actor"] == "gateway"

    async def test_unhandled_event_is_ignored(self, reconciler, session_factory) -> None:
        result = await reconciler.apply(
            UnhandledEvent(event_id="evt_x", event_type="customer.created")
        )

        assert result.outcome == ReconciliationOutcome.IGNORED
        async with session_factory() as session:
            rows = (await session.execute(select(PaymentEventModel))).scalars().all()
        assert rows == []

    async def test_lost_races_are_retried_then_give_up(
        self, session_factory, place_order, stock_of, monkeypatch
    ) -> None:
        order = await place_order()
        attempts = []

        async def always_lose(self, order, expected) -> bool:
            attempts.append(expected)
            return False

        monkeypatch.setattr(OrderRepository, "save_transition", always_lose)
        reconciler = PaymentReconciler(session_factory, max_attempts=3)

        with pytest.raises(ConcurrentUpdateError):
            await reconciler.apply(failure(order.id))

        assert len(attempts) == 3
        assert await stock_of("p") == 3
        async with session_factory() as session:
            assert await session.get(PaymentEventModel, "evt_failed") is None

    async def test_lost_race_retries_from_fresh_state(
        self, session_factory, place_order, monkeypatch
    ) -> None:
        """After losing once, the retry re-reads the order and succeeds."""
        order = await place_order()
        original = OrderRepository.save_transition
        calls = []

        async def lose_once(self, order, expected) -> bool:
            calls.append(expected)
            if len(calls) == 1:
                return False
            return await original(self, order, expected)

        monkeypatch.setattr(OrderRepository, "save_transition", lose_once)

        result = await PaymentReconciler(session_factory).apply(success(order.id))

        assert result.outcome == ReconciliationOutcome.APPLIED
        assert len(calls) == 2
