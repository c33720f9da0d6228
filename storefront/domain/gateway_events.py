"""Payment gateway events as explicit tagged variants.

Inbound gateway payloads are validated at the boundary and turned into one
of these variants before they reach the reconciliation state machine, which
dispatches on the variant type only.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PaymentSucceeded:
    """Gateway confirmed that a checkout session was paid.

    Attributes:
        event_id: Gateway event id, used for redelivery detection.
        event_type: Raw gateway event type.
        session_id: Checkout session that was paid.
        order_id: Order id from session metadata, when present.
        payment_intent_id: Payment intent, recorded as the transaction id.
        raw: Raw session object.
    """

    event_id: str
    event_type: str
    session_id: str
    order_id: str | None = None
    payment_intent_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class PaymentFailed:
    """Gateway reported that payment for an order failed.

    At least one of order_id, session_id or payment_intent_id is set.
    """

    event_id: str
    event_type: str
    order_id: str | None = None
    session_id: str | None = None
    payment_intent_id: str | None = None
    reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ChargeRefunded:
    """Gateway reported a refund on a charge.

    Refund events carry no order id; the payment intent is the join key
    to the order's transaction id.
    """

    event_id: str
    event_type: str
    payment_intent_id: str
    amount_refunded_cents: int = 0
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class UnhandledEvent:
    """Any gateway event the state machine does not act on."""

    event_id: str
    event_type: str
    reason: str = "unsupported event type"


GatewayEvent = PaymentSucceeded | PaymentFailed | ChargeRefunded | UnhandledEvent
