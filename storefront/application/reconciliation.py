"""Payment reconciliation state machine.

Aligns order and payment status with what the gateway reports:

- success: (created, pending) -> (processing, paid); stock untouched, it
  was already taken at checkout.
- failure: (created, pending) -> (cancelled, failed); reserved stock is
  restored.
- refund:  (*, paid) -> (refunded, refunded); full item quantities are
  restored, whatever amount was refunded.

Gateways redeliver and reorder events, so every handler is idempotent:

- each gateway event id is recorded in the payment event log in the same
  transaction as its effect, and a recorded id is never applied twice;
- each transition is a compare-and-set on (status, payment status), and a
  lost race is retried from a fresh read;
- re-applying a transition the order already went through is a no-op, and
  an event that no longer fits the order's state is acknowledged and
  ignored;
- a refund that arrives before the payment it refunds is deferred, and
  applied right after that payment is reconciled.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.entities import Order
from storefront.domain.exceptions import ConcurrentUpdateError, InvalidStateError, OrderNotFoundError
from storefront.domain.gateway_events import (
    ChargeRefunded,
    GatewayEvent,
    PaymentFailed,
    PaymentSucceeded,
    UnhandledEvent,
)
from storefront.domain.state_machines import PaymentStatus
from storefront.infrastructure.inventory import InventoryLedger
from storefront.infrastructure.repositories import OrderRepository, PaymentEventLog

logger = structlog.get_logger()

GATEWAY_ACTOR = "gateway"


class ReconciliationOutcome(str, Enum):
    """What reconciling one event did to the order."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    DEFERRED = "deferred"


@dataclass
class ReconciliationResult:
    """Result of reconciling one event or refund.

    Attributes:
        outcome: What happened.
        order_id: Order the event resolved to, if any.
        order: Order state after reconciliation, if resolved.
        message: Human-readable summary.
    """

    outcome: ReconciliationOutcome
    order_id: str | None = None
    order: Order | None = None
    message: str = ""


class _LostRace(Exception):
    """The order changed between read and compare-and-set."""


Locator = Callable[[OrderRepository], Awaitable[Order | None]]
Transition = Callable[[Order], bool]


class PaymentReconciler:
    """Applies gateway outcomes to orders."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger_factory: Callable[[AsyncSession], InventoryLedger] = InventoryLedger,
        max_attempts: int = 3,
    ) -> None:
        """Initialize reconciler.

        Args:
            session_factory: Factory for database sessions.
            ledger_factory: Builds the inventory ledger for a session.
            max_attempts: Compare-and-set attempts before giving up.
        """
        self.session_factory = session_factory
        self.ledger_factory = ledger_factory
        self.max_attempts = max_attempts

    # =========================================================================
    # Event Dispatch
    # =========================================================================

    async def apply(self, event: GatewayEvent) -> ReconciliationResult:
        """Apply a gateway event of any variant.

        Args:
            event: Parsed gateway event.

        Returns:
            Reconciliation result. Unhandled variants are ignored.
        """
        if isinstance(event, PaymentSucceeded):
            return await self.handle_payment_succeeded(event)
        if isinstance(event, PaymentFailed):
            return await self.handle_payment_failed(event)
        if isinstance(event, ChargeRefunded):
            return await self.handle_refund(event)

        logger.info(
            "Gateway event ignored",
            event_id=event.event_id,
            event_type=event.event_type,
            reason=event.reason if isinstance(event, UnhandledEvent) else None,
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.IGNORED,
            message=f"Event type {event.event_type} is not handled",
        )

    async def handle_payment_succeeded(self, event: PaymentSucceeded) -> ReconciliationResult:
        """Mark the order paid. Stock was already decremented at checkout."""

        async def locate(orders: OrderRepository) -> Order | None:
            if event.order_id:
                return await orders.get(event.order_id)
            return await orders.get_by_session_id(event.session_id)

        def transition(order: Order) -> bool:
            return order.mark_paid(event.payment_intent_id, event.raw)

        return await self._reconcile(
            event_id=event.event_id,
            event_type=event.event_type,
            reference=event.order_id or event.session_id,
            locate=locate,
            transition=transition,
            restock=False,
            actor=GATEWAY_ACTOR,
            reason=event.event_type,
            settle_deferred=True,
        )

    async def handle_payment_failed(self, event: PaymentFailed) -> ReconciliationResult:
        """Cancel the order and restore the stock reserved for it."""

        async def locate(orders: OrderRepository) -> Order | None:
            if event.order_id:
                return await orders.get(event.order_id)
            if event.session_id:
                return await orders.get_by_session_id(event.session_id)
            if event.payment_intent_id:
                return await orders.get_by_transaction_id(event.payment_intent_id)
            return None

        def transition(order: Order) -> bool:
            return order.mark_failed(event.raw)

        return await self._reconcile(
            event_id=event.event_id,
            event_type=event.event_type,
            reference=event.order_id or event.session_id or event.payment_intent_id,
            locate=locate,
            transition=transition,
            restock=True,
            actor=GATEWAY_ACTOR,
            reason=event.reason or event.event_type,
        )

    async def handle_refund(self, event: ChargeRefunded) -> ReconciliationResult:
        """Refund the order matched by payment intent and restore its stock.

        When no order carries the payment intent yet, the event is deferred
        until the payment success that records it is reconciled.
        """

        async def locate(orders: OrderRepository) -> Order | None:
            return await orders.get_by_transaction_id(event.payment_intent_id)

        def transition(order: Order) -> bool:
            return order.mark_refunded(event.raw)

        return await self._reconcile(
            event_id=event.event_id,
            event_type=event.event_type,
            reference=event.payment_intent_id,
            locate=locate,
            transition=transition,
            restock=True,
            actor=GATEWAY_ACTOR,
            reason=f"{event.event_type} amount={event.amount_refunded_cents}",
            defer_key=event.payment_intent_id,
            payload=event.raw,
        )

    # =========================================================================
    # Explicit Refunds
    # =========================================================================

    async def apply_refund(
        self,
        order_id: str,
        actor: str,
        reason: str | None = None,
    ) -> ReconciliationResult:
        """Record a refund already issued at the gateway.

        Unlike webhook events, a state that cannot be refunded is an error
        here rather than a stale event.

        Args:
            order_id: Refunded order.
            actor: Who requested the refund.
            reason: Optional reason for the history.

        Returns:
            APPLIED, or UNCHANGED if a refund event already landed.

        Raises:
            OrderNotFoundError: If the order does not exist.
            InvalidStateError: If the order payment is not paid.
        """

        async def locate(orders: OrderRepository) -> Order | None:
            order = await orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            return order

        def transition(order: Order) -> bool:
            return order.mark_refunded()

        return await self._reconcile(
            event_id=None,
            event_type="refund.requested",
            reference=order_id,
            locate=locate,
            transition=transition,
            restock=True,
            actor=actor,
            reason=reason or "refund requested",
            strict=True,
        )

    # =========================================================================
    # Compare-and-set Loop
    # =========================================================================

    async def _reconcile(
        self,
        *,
        event_id: str | None,
        event_type: str,
        reference: str | None,
        locate: Locator,
        transition: Transition,
        restock: bool,
        actor: str,
        reason: str | None,
        strict: bool = False,
        defer_key: str | None = None,
        payload: dict[str, Any] | None = None,
        settle_deferred: bool = False,
    ) -> ReconciliationResult:
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.session_factory.begin() as session:
                    return await self._attempt(
                        session,
                        event_id=event_id,
                        event_type=event_type,
                        locate=locate,
                        transition=transition,
                        restock=restock,
                        actor=actor,
                        reason=reason,
                        strict=strict,
                        defer_key=defer_key,
                        payload=payload,
                        settle_deferred=settle_deferred,
                    )
            except (_LostRace, IntegrityError) as e:
                logger.info(
                    "Order changed concurrently, retrying reconciliation",
                    event_id=event_id,
                    event_type=event_type,
                    reference=reference,
                    attempt=attempt,
                    error_type=type(e).__name__,
                )

        logger.error(
            "Reconciliation gave up after concurrent updates",
            event_id=event_id,
            event_type=event_type,
            reference=reference,
            attempts=self.max_attempts,
        )
        raise ConcurrentUpdateError("Order", reference or "unknown", self.max_attempts)

    async def _attempt(
        self,
        session: AsyncSession,
        *,
        event_id: str | None,
        event_type: str,
        locate: Locator,
        transition: Transition,
        restock: bool,
        actor: str,
        reason: str | None,
        strict: bool,
        defer_key: str | None,
        payload: dict[str, Any] | None,
        settle_deferred: bool,
    ) -> ReconciliationResult:
        events = PaymentEventLog(session)
        orders = OrderRepository(session)

        if event_id and await events.seen(event_id):
            logger.info("Duplicate gateway event ignored", event_id=event_id, event_type=event_type)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.DUPLICATE,
                message="Event already processed",
            )

        async def finish(
            outcome: ReconciliationOutcome, order: Order | None, message: str
        ) -> ReconciliationResult:
            if event_id:
                await events.record(event_id, event_type, order.id if order else None, outcome.value)
            return ReconciliationResult(
                outcome=outcome,
                order_id=order.id if order else None,
                order=order,
                message=message,
            )

        order = await locate(orders)
        if order is None and defer_key and event_id:
            await events.record(
                event_id,
                event_type,
                None,
                ReconciliationOutcome.DEFERRED.value,
                transaction_id=defer_key,
                payload=payload,
            )
            logger.info(
                "Gateway event deferred until its payment is reconciled",
                event_id=event_id,
                event_type=event_type,
                transaction_id=defer_key,
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.DEFERRED,
                message="No order for this payment yet; event deferred",
            )
        if order is None:
            logger.warning(
                "Gateway event does not match any order",
                event_id=event_id,
                event_type=event_type,
            )
            return await finish(ReconciliationOutcome.IGNORED, None, "No matching order")

        previous = order.state
        try:
            changed = transition(order)
        except InvalidStateError as e:
            if strict:
                raise
            logger.warning(
                "Stale gateway event ignored",
                event_id=event_id,
                event_type=event_type,
                order_id=order.id,
                status=previous[0].value,
                payment_status=previous[1].value,
                error=e.message,
            )
            return await finish(
                ReconciliationOutcome.IGNORED,
                order,
                f"Order is {previous[0].value}/{previous[1].value}; event not applicable",
            )

        if not changed:
            logger.info(
                "Order already reconciled",
                event_id=event_id,
                event_type=event_type,
                order_id=order.id,
                payment_status=order.payment.status.value,
            )
            return await finish(ReconciliationOutcome.UNCHANGED, order, "Order already in target state")

        if not await orders.save_transition(order, previous):
            raise _LostRace()

        if restock:
            await self.ledger_factory(session).restore(order.quantities_by_product())

        await orders.record_history(order, previous, actor=actor, reason=reason)

        logger.info(
            "Order reconciled",
            event_id=event_id,
            event_type=event_type,
            order_id=order.id,
            from_status=previous[0].value,
            to_status=order.status.value,
            from_payment_status=previous[1].value,
            to_payment_status=order.payment.status.value,
            stock_restored=restock,
        )

        message = "Order updated"
        if settle_deferred and order.payment.status == PaymentStatus.PAID:
            settled = await self._apply_deferred_refunds(session, order)
            if settled:
                message = f"Order updated; {settled} deferred refund(s) applied"
        return await finish(ReconciliationOutcome.APPLIED, order, message)

    async def _apply_deferred_refunds(self, session: AsyncSession, order: Order) -> int:
        """Apply refunds that were received before this order was paid.

        Runs in the transaction that marked the order paid, so the payment
        and its refund become visible together.

        Returns:
            Number of deferred events settled.
        """
        if not order.payment.transaction_id:
            return 0

        events = PaymentEventLog(session)
        deferred = await events.deferred_for(order.payment.transaction_id)
        if not deferred:
            return 0

        orders = OrderRepository(session)
        previous = order.state
        order.mark_refunded(deferred[-1]["payload"])
        if not await orders.save_transition(order, previous):
            raise _LostRace()

        await self.ledger_factory(session).restore(order.quantities_by_product())
        await orders.record_history(
            order,
            previous,
            actor=GATEWAY_ACTOR,
            reason=f"{deferred[-1]['event_type']} (deferred)",
        )
        for entry in deferred:
            await events.resolve(entry["event_id"], order.id, ReconciliationOutcome.APPLIED.value)

        logger.info(
            "Deferred refund applied",
            order_id=order.id,
            transaction_id=order.payment.transaction_id,
            event_ids=[entry["event_id"] for entry in deferred],
        )
        return len(deferred)
