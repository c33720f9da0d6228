"""Parsing of Stripe webhook payloads into gateway event variants.

The raw payload is validated with pydantic and mapped onto one of the
tagged variants in :mod:`storefront.domain.gateway_events`. Event types the
reconciliation flow does not act on become :class:`UnhandledEvent`.
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from storefront.domain.exceptions import ValidationError
from storefront.domain.gateway_events import (
    ChargeRefunded,
    GatewayEvent,
    PaymentFailed,
    PaymentSucceeded,
    UnhandledEvent,
)

SESSION_COMPLETED = "checkout.session.completed"
SESSION_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
SESSION_ASYNC_FAILED = "checkout.session.async_payment_failed"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
CHARGE_REFUNDED = "charge.refunded"


# ============================================================================
# Payload Schemas
# ============================================================================


class _StripeObject(BaseModel):
    """The ``data.object`` of an event; only the fields we read are typed."""

    model_config = ConfigDict(extra="allow")

    id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    payment_intent: Any = None
    payment_status: str | None = None
    amount_refunded: int = 0
    last_payment_error: dict[str, Any] | None = None


class _EventData(BaseModel):
    object: _StripeObject


class _StripeEventEnvelope(BaseModel):
    """Top-level Stripe event."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    data: _EventData


def _intent_id(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("id")
    return value


# ============================================================================
# Parser
# ============================================================================


def parse_stripe_event(payload: bytes | str | dict[str, Any]) -> GatewayEvent:
    """Turn a verified Stripe payload into a gateway event variant.

    Args:
        payload: Raw request body or already-decoded JSON.

    Returns:
        One of PaymentSucceeded, PaymentFailed, ChargeRefunded, UnhandledEvent.

    Raises:
        ValidationError: If the payload is not a well-formed Stripe event.
    """
    try:
        data = json.loads(payload) if isinstance(payload, (bytes, str)) else payload
        envelope = _StripeEventEnvelope.model_validate(data)
    except (ValueError, PydanticValidationError) as e:
        raise ValidationError(
            "Malformed gateway event payload",
            details={"error": str(e)},
        ) from e

    event_id = envelope.id
    event_type = envelope.type
    obj = envelope.data.object
    raw = obj.model_dump()
    order_id = obj.metadata.get("order_id")

    if event_type in (SESSION_COMPLETED, SESSION_ASYNC_SUCCEEDED):
        # Delayed payment methods complete the session before funds arrive
        if obj.payment_status == "unpaid":
            return UnhandledEvent(
                event_id=event_id,
                event_type=event_type,
                reason="session completed without payment",
            )
        return PaymentSucceeded(
            event_id=event_id,
            event_type=event_type,
            session_id=obj.id,
            order_id=order_id,
            payment_intent_id=_intent_id(obj.payment_intent),
            raw=raw,
        )

    if event_type == SESSION_ASYNC_FAILED:
        return PaymentFailed(
            event_id=event_id,
            event_type=event_type,
            order_id=order_id,
            session_id=obj.id,
            payment_intent_id=_intent_id(obj.payment_intent),
            raw=raw,
        )

    if event_type == PAYMENT_INTENT_FAILED:
        error = obj.last_payment_error or {}
        return PaymentFailed(
            event_id=event_id,
            event_type=event_type,
            order_id=order_id,
            payment_intent_id=obj.id,
            reason=error.get("message"),
            raw=raw,
        )

    if event_type == CHARGE_REFUNDED:
        intent_id = _intent_id(obj.payment_intent)
        if not intent_id:
            raise ValidationError(
                "Refund event has no payment intent",
                details={"event_id": event_id},
            )
        return ChargeRefunded(
            event_id=event_id,
            event_type=event_type,
            payment_intent_id=intent_id,
            amount_refunded_cents=obj.amount_refunded,
            raw=raw,
        )

    return UnhandledEvent(event_id=event_id, event_type=event_type)
