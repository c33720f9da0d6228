"""Payment application service.

Connects checkout to the payment gateway:

- start a hosted checkout session for the caller's cart,
- verify a session after the customer is redirected back,
- refund a paid order.

Payment outcomes themselves arrive asynchronously through webhooks and are
applied by :class:`~storefront.application.reconciliation.PaymentReconciler`.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.application.checkout_service import CheckoutService
from storefront.application.reconciliation import PaymentReconciler
from storefront.domain.entities import Order
from storefront.domain.exceptions import (
    AuthorizationError,
    InvalidStateError,
    OrderNotFoundError,
    PreconditionError,
    ValidationError,
)
from storefront.domain.state_machines import PaymentStatus
from storefront.domain.value_objects import CallerIdentity
from storefront.infrastructure.payment_gateway import GatewayError, LineItem, PaymentGateway
from storefront.infrastructure.repositories import OrderRepository

logger = structlog.get_logger()

SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class CheckoutSessionResult:
    """Result of starting a hosted checkout session."""

    order: Order
    session_id: str
    redirect_url: str


@dataclass
class VerifySessionResult:
    """Live state of a checkout session and its order."""

    session_id: str
    payment_status: str
    session_status: str | None
    order: Order


@dataclass
class RefundResult:
    """Result of a refund request."""

    order: Order
    refund_id: str
    amount_cents: int


# ============================================================================
# Payment Service
# ============================================================================


class PaymentService:
    """Service for gateway-facing payment operations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        checkout_service: CheckoutService,
        reconciler: PaymentReconciler,
        frontend_url: str,
        success_path: str = "/order/success",
        cancel_path: str = "/cart",
        session_ttl_minutes: int = 30,
    ) -> None:
        """Initialize payment service.

        Args:
            session_factory: Factory for database sessions.
            gateway: Payment gateway adapter.
            checkout_service: Service that turns carts into orders.
            reconciler: Applies refunds to orders.
            frontend_url: Base URL the gateway redirects customers back to.
            success_path: Path of the order confirmation page.
            cancel_path: Path customers return to when they abandon payment.
            session_ttl_minutes: Lifetime of a hosted checkout session.
        """
        self.session_factory = session_factory
        self.gateway = gateway
        self.checkout_service = checkout_service
        self.reconciler = reconciler
        self.frontend_url = frontend_url.rstrip("/")
        self.success_path = success_path
        self.cancel_path = cancel_path
        self.session_ttl_minutes = session_ttl_minutes

    async def start_checkout_session(
        self,
        identity: CallerIdentity,
        metadata: dict[str, Any] | None = None,
    ) -> CheckoutSessionResult:
        """Check out the caller's cart and open a hosted payment page for it.

        The order and the gateway session are created in the same database
        transaction: if the gateway call fails, the order, the stock
        decrement and the emptied cart all roll back.

        Args:
            identity: Calling user.
            metadata: Checkout metadata; ``email`` prefills the payment page.

        Returns:
            CheckoutSessionResult with the redirect URL.

        Raises:
            EmptyCartError: If the caller's cart is empty.
            OutOfStockError: If stock cannot cover the cart.
            ConcurrentStockConflictError: If a concurrent checkout took the stock.
            GatewayError: If the gateway cannot create the session.
        """
        metadata = dict(metadata or {})

        async with self.session_factory.begin() as session:
            order = await self.checkout_service.place_order(
                session, identity.user_id, self.gateway.name, metadata
            )

            payable = await self.gateway.create_payable_session(
                line_items=[
                    LineItem(
                        title=item.title,
                        unit_amount_cents=item.price_cents,
                        quantity=item.quantity,
                        image_url=item.thumbnail,
                    )
                    for item in order.items
                ],
                success_url=(
                    f"{self.frontend_url}{self.success_path}"
                    f"?session_id={SESSION_ID_PLACEHOLDER}&order_id={order.id}"
                ),
                cancel_url=f"{self.frontend_url}{self.cancel_path}",
                metadata={"order_id": order.id, "user_id": identity.user_id},
                customer_email=metadata.get("email"),
                expires_at=datetime.now(UTC) + timedelta(minutes=self.session_ttl_minutes),
            )

            order.attach_session(payable.session_id)
            await OrderRepository(session).attach_session(order)

        logger.info(
            "Checkout session started",
            order_id=order.id,
            session_id=payable.session_id,
            owner_id=identity.user_id,
        )
        return CheckoutSessionResult(
            order=order,
            session_id=payable.session_id,
            redirect_url=payable.redirect_url,
        )

    async def verify_session(
        self, identity: CallerIdentity, session_id: str
    ) -> VerifySessionResult:
        """Report the live state of a checkout session. Changes nothing.

        Raises:
            ValidationError: If the session carries no order reference.
            OrderNotFoundError: If the referenced order does not exist.
            AuthorizationError: If the caller does not own the order.
            GatewayError: If the gateway cannot be reached.
        """
        gateway_session = await self.gateway.retrieve_session(session_id)

        order_id = gateway_session.metadata.get("order_id")
        if not order_id:
            raise ValidationError(
                f"Checkout session {session_id} is not linked to an order",
                details={"session_id": session_id},
            )

        async with self.session_factory() as session:
            order = await OrderRepository(session).get(order_id)

        if order is None:
            raise OrderNotFoundError(order_id)
        if not identity.owns(order.owner_id):
            raise AuthorizationError("Order", order_id, identity.user_id)

        return VerifySessionResult(
            session_id=gateway_session.session_id,
            payment_status=gateway_session.payment_status,
            session_status=gateway_session.session_status,
            order=order,
        )

    async def refund_order(
        self,
        identity: CallerIdentity,
        order_id: str,
        amount_cents: int | None = None,
        reason: str | None = None,
    ) -> RefundResult:
        """Refund a paid order, fully or partially.

        The order is first claimed for refunding so a concurrent request
        fails instead of refunding twice. The refund is then issued at the
        gateway under an idempotency key derived from the order, and
        recorded on the order. Any amount refunds the whole order and
        restores all its stock. The ``charge.refunded`` webhook that follows
        is a no-op.

        Args:
            identity: Calling user; must own the order or be an admin.
            order_id: Order to refund.
            amount_cents: Partial amount; None refunds the subtotal.
            reason: Optional reason recorded in the status history.

        Returns:
            RefundResult with the refunded order.

        Raises:
            OrderNotFoundError: If the order does not exist.
            AuthorizationError: If the caller may not refund it.
            InvalidStateError: If the order is not paid or a refund is
                already in progress.
            PreconditionError: If no gateway transaction is recorded.
            ValidationError: If the amount is out of range.
            GatewayError: If the gateway refuses the refund.
        """
        async with self.session_factory() as session:
            order = await OrderRepository(session).get(order_id)

        if order is None:
            raise OrderNotFoundError(order_id)
        if not (identity.owns(order.owner_id) or identity.is_admin):
            raise AuthorizationError("Order", order_id, identity.user_id)
        if order.payment.status != PaymentStatus.PAID:
            raise InvalidStateError(
                f"Order {order_id} cannot be refunded while payment is "
                f"'{order.payment.status.value}'",
                details={"order_id": order_id, "payment_status": order.payment.status.value},
            )
        if not order.payment.transaction_id:
            raise PreconditionError(
                f"Order {order_id} has no gateway transaction to refund",
                details={"order_id": order_id},
            )
        if amount_cents is not None and not 0 < amount_cents <= order.sub_total_cents:
            raise ValidationError(
                f"Refund amount must be between 1 and {order.sub_total_cents}",
                details={"amount_cents": amount_cents, "sub_total_cents": order.sub_total_cents},
            )

        async with self.session_factory.begin() as session:
            claimed = await OrderRepository(session).claim_refund(order_id, datetime.now(UTC))
        if not claimed:
            logger.info("Refund rejected, order already claimed", order_id=order_id)
            raise InvalidStateError(
                f"Order {order_id} already has a refund in progress",
                details={"order_id": order_id},
            )

        try:
            refund = await self.gateway.create_refund(
                order.payment.transaction_id,
                amount_cents,
                idempotency_key=f"refund-{order_id}",
            )
        except GatewayError:
            async with self.session_factory.begin() as session:
                await OrderRepository(session).release_refund_claim(order_id)
            logger.warning("Refund refused by gateway, claim released", order_id=order_id)
            raise

        result = await self.reconciler.apply_refund(order_id, actor=identity.user_id, reason=reason)

        logger.info(
            "Order refunded",
            order_id=order_id,
            refund_id=refund.refund_id,
            amount_cents=amount_cents or order.sub_total_cents,
            outcome=result.outcome.value,
        )
        return RefundResult(
            order=result.order or order,
            refund_id=refund.refund_id,
            amount_cents=amount_cents if amount_cents is not None else order.sub_total_cents,
        )
