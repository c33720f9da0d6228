"""Payment gateway adapter.

Boundary to the external payment processor. The application layer talks
to the :class:`PaymentGateway` protocol; :class:`StripeGateway` implements it
on top of the Stripe SDK's async API. The gateway is constructed once at
startup with its credentials and passed to the services that need it.

Provider failures surface as :class:`GatewayError`, which is deliberately
not a domain error: callers can tell "your request was invalid" apart from
"the payment provider is unavailable, retry".
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import stripe
import structlog

logger = structlog.get_logger()


# ============================================================================
# Errors
# ============================================================================


class GatewayError(Exception):
    """Raised when the payment provider call fails.

    Attributes:
        message: Human-readable error message.
        retryable: Whether retrying the same call may succeed.
        provider_code: Provider-specific error code, if any.
    """

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        provider_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.provider_code = provider_code


# ============================================================================
# Gateway Types
# ============================================================================


@dataclass(frozen=True)
class LineItem:
    """A line the customer pays for on the gateway's hosted page."""

    title: str
    unit_amount_cents: int
    quantity: int
    image_url: str | None = None


@dataclass(frozen=True)
class PayableSession:
    """Result of creating a checkout session."""

    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class GatewaySession:
    """Live state of a checkout session as reported by the gateway.

    Attributes:
        session_id: Checkout session id.
        payment_status: Gateway payment status ("paid", "unpaid"...).
        session_status: Gateway session status ("open", "complete", "expired").
        metadata: Metadata attached when the session was created.
        payment_intent_id: Payment intent id, once one exists.
    """

    session_id: str
    payment_status: str
    session_status: str | None
    metadata: dict[str, str] = field(default_factory=dict)
    payment_intent_id: str | None = None


@dataclass(frozen=True)
class GatewayRefund:
    """Result of issuing a refund."""

    refund_id: str
    status: str | None = None


class PaymentGateway(Protocol):
    """Operations the checkout and reconciliation flows need from a gateway."""

    name: str

    async def create_payable_session(
        self,
        line_items: list[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
        expires_at: datetime | None = None,
    ) -> PayableSession: ...

    async def retrieve_session(self, session_id: str) -> GatewaySession: ...

    async def create_refund(
        self,
        transaction_id: str,
        amount_cents: int | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayRefund: ...


# ============================================================================
# Stripe Implementation
# ============================================================================


class StripeGateway:
    """Stripe Checkout implementation of :class:`PaymentGateway`.

    The API key is passed on every request instead of being set on the
    ``stripe`` module, so several gateways can coexist in one process.

    Example usage:
        gateway = StripeGateway(api_key=settings.stripe_secret_key, currency="usd")
        session = await gateway.create_payable_session(items, success, cancel, meta)
    """

    name = "stripe"

    def __init__(self, api_key: str, currency: str = "usd") -> None:
        """Initialize gateway.

        Args:
            api_key: Stripe secret key.
            currency: ISO currency code all amounts are charged in.
        """
        self.api_key = api_key
        self.currency = currency.lower()

    def _require_key(self) -> None:
        if not self.api_key:
            raise GatewayError("Stripe secret key is not configured", retryable=False)

    def _wrap(self, operation: str, exc: stripe.StripeError) -> GatewayError:
        # 4xx from Stripe other than rate limiting will fail the same way again
        status = getattr(exc, "http_status", None)
        retryable = status is None or status >= 500 or status == 429
        logger.error(
            "Stripe call failed",
            operation=operation,
            error=str(exc),
            error_type=type(exc).__name__,
            http_status=status,
        )
        return GatewayError(
            f"Payment provider error during {operation}: {exc.user_message or exc}",
            retryable=retryable,
            provider_code=getattr(exc, "code", None),
        )

    async def create_payable_session(
        self,
        line_items: list[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
        expires_at: datetime | None = None,
    ) -> PayableSession:
        """Create a Stripe Checkout session in payment mode.

        Metadata is attached both to the session and to its payment intent,
        so payment intent events can be resolved to the order too.

        Args:
            line_items: Lines to charge.
            success_url: Redirect after payment.
            cancel_url: Redirect when the customer abandons payment.
            metadata: String metadata (order id, user id).
            customer_email: Optional prefilled email.
            expires_at: Optional session expiry.

        Returns:
            Session id and hosted page URL.

        Raises:
            GatewayError: If Stripe rejects or fails the call.
        """
        self._require_key()

        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [self._line_item(item) for item in line_items],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email
        if expires_at is not None:
            params["expires_at"] = int(expires_at.timestamp())

        try:
            session = await stripe.checkout.Session.create_async(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            raise self._wrap("create_payable_session", e) from e

        logger.info(
            "Stripe checkout session created",
            session_id=session.id,
            order_id=metadata.get("order_id"),
        )
        return PayableSession(session_id=session.id, redirect_url=session.url)

    async def retrieve_session(self, session_id: str) -> GatewaySession:
        """Fetch the live state of a checkout session.

        Raises:
            GatewayError: If Stripe rejects or fails the call.
        """
        self._require_key()

        try:
            session = await stripe.checkout.Session.retrieve_async(
                session_id, api_key=self.api_key
            )
        except stripe.StripeError as e:
            raise self._wrap("retrieve_session", e) from e

        return GatewaySession(
            session_id=session.id,
            payment_status=session.payment_status,
            session_status=session.status,
            metadata=dict(session.metadata or {}),
            payment_intent_id=_object_id(session.payment_intent),
        )

    async def create_refund(
        self,
        transaction_id: str,
        amount_cents: int | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayRefund:
        """Refund a payment intent, fully or partially.

        Args:
            transaction_id: Payment intent id.
            amount_cents: Amount to refund; None refunds the full charge.
            idempotency_key: Stripe idempotency key; repeats of a keyed
                request return the first refund instead of issuing another.

        Raises:
            GatewayError: If Stripe rejects or fails the call.
        """
        self._require_key()

        params: dict[str, Any] = {"payment_intent": transaction_id}
        if amount_cents is not None:
            params["amount"] = amount_cents
        if idempotency_key is not None:
            params["idempotency_key"] = idempotency_key

        try:
            refund = await stripe.Refund.create_async(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            raise self._wrap("create_refund", e) from e

        logger.info(
            "Stripe refund created",
            refund_id=refund.id,
            transaction_id=transaction_id,
            amount_cents=amount_cents,
        )
        return GatewayRefund(refund_id=refund.id, status=refund.status)

    def _line_item(self, item: LineItem) -> dict[str, Any]:
        product_data: dict[str, Any] = {"name": item.title}
        if item.image_url:
            product_data["images"] = [item.image_url]
        return {
            "price_data": {
                "currency": self.currency,
                "product_data": product_data,
                "unit_amount": item.unit_amount_cents,
            },
            "quantity": item.quantity,
        }


def _object_id(value: Any) -> str | None:
    """Return the id of an expandable Stripe field (string or object)."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)
