"""Webhook processing service.

Handles incoming payment gateway webhooks with:
- Stripe signature verification (HMAC with timestamp tolerance)
- Parsing into tagged gateway event variants
- Event deduplication and out-of-order tolerance, delegated to the
  payment reconciler
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import stripe
import structlog

from storefront.application.reconciliation import PaymentReconciler, ReconciliationOutcome
from storefront.domain.gateway_events import GatewayEvent
from storefront.infrastructure.stripe_events import parse_stripe_event

logger = structlog.get_logger()


class EventStatus(str, Enum):
    """Final status of a webhook delivery."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    DEFERRED = "deferred"
    FAILED = "failed"


_STATUS_BY_OUTCOME = {
    ReconciliationOutcome.APPLIED: EventStatus.PROCESSED,
    ReconciliationOutcome.UNCHANGED: EventStatus.PROCESSED,
    ReconciliationOutcome.DUPLICATE: EventStatus.DUPLICATE,
    ReconciliationOutcome.IGNORED: EventStatus.IGNORED,
    ReconciliationOutcome.DEFERRED: EventStatus.DEFERRED,
}


@dataclass
class WebhookResult:
    """Result of webhook processing.

    Attributes:
        success: Whether the delivery can be acknowledged.
        event_id: The gateway event ID.
        status: Final event status.
        message: Status message.
        order_id: Order the event resolved to, if any.
    """

    success: bool
    event_id: str
    status: EventStatus
    message: str
    order_id: str | None = None

    @property
    def duplicate(self) -> bool:
        return self.status == EventStatus.DUPLICATE


class StripeSignatureVerifier:
    """Verifies the ``Stripe-Signature`` header of webhook payloads."""

    def __init__(self, secret: str, tolerance: int = 300) -> None:
        """Initialize verifier.

        Args:
            secret: Webhook endpoint signing secret (``whsec_...``).
            tolerance: Maximum age of the signed timestamp, in seconds.
        """
        self.secret = secret
        self.tolerance = tolerance

    def verify(self, payload: bytes, signature: str | None) -> bool:
        """Verify the signature of a raw webhook payload.

        Args:
            payload: Raw request body, exactly as received.
            signature: ``Stripe-Signature`` header value.

        Returns:
            True if signature is valid and recent enough.
        """
        if not signature:
            logger.warning("Missing webhook signature")
            return False

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self.secret, self.tolerance
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.warning(
                "Webhook signature rejected",
                error=str(e),
                signature_prefix=signature[:20],
            )
            return False

        logger.debug("Webhook signature verified")
        return True


class WebhookService:
    """Service for processing payment gateway webhooks.

    Example usage:
        service = WebhookService(verifier, reconciler)

        if not service.verify_signature(body, header):
            return 400

        result = await service.process_payload(body)
    """

    def __init__(
        self,
        verifier: StripeSignatureVerifier,
        reconciler: PaymentReconciler,
        parser: Callable[[bytes | str | dict[str, Any]], GatewayEvent] = parse_stripe_event,
    ) -> None:
        """Initialize webhook service.

        Args:
            verifier: Signature verifier.
            reconciler: Applies events to orders.
            parser: Turns raw payloads into gateway events.
        """
        self.verifier = verifier
        self.reconciler = reconciler
        self.parser = parser

    def verify_signature(self, payload: bytes, signature: str | None) -> bool:
        """Verify webhook signature."""
        return self.verifier.verify(payload, signature)

    async def process_payload(self, payload: bytes) -> WebhookResult:
        """Parse and process a verified webhook payload.

        Raises:
            ValidationError: If the payload is not a well-formed event.
        """
        event = self.parser(payload)
        return await self.process_event(event)

    async def process_event(self, event: GatewayEvent) -> WebhookResult:
        """Process a parsed gateway event.

        A failure is reported rather than raised, so the delivery can be
        answered with an error status and redelivered by the gateway.

        Args:
            event: Parsed gateway event.

        Returns:
            WebhookResult describing the outcome.
        """
        logger.info(
            "Processing webhook event",
            event_id=event.event_id,
            event_type=event.event_type,
        )

        try:
            result = await self.reconciler.apply(event)
        except Exception as e:
            logger.exception(
                "Webhook event processing failed",
                event_id=event.event_id,
                event_type=event.event_type,
                error=str(e),
            )
            return WebhookResult(
                success=False,
                event_id=event.event_id,
                status=EventStatus.FAILED,
                message=f"Processing failed: {e}",
            )

        status = _STATUS_BY_OUTCOME[result.outcome]
        logger.info(
            "Webhook event processed",
            event_id=event.event_id,
            event_type=event.event_type,
            status=status.value,
            order_id=result.order_id,
        )
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=status,
            message=result.message,
            order_id=result.order_id,
        )
