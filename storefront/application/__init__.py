"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from storefront.application.cart_service import CartService
from storefront.application.checkout_service import CheckoutResult, CheckoutService
from storefront.application.order_service import OrderDetails, OrderService
from storefront.application.payment_service import (
    CheckoutSessionResult,
    PaymentService,
    RefundResult,
    VerifySessionResult,
)
from storefront.application.reconciliation import (
    PaymentReconciler,
    ReconciliationOutcome,
    ReconciliationResult,
)
from storefront.application.webhook_service import (
    EventStatus,
    StripeSignatureVerifier,
    WebhookResult,
    WebhookService,
)

__all__ = [
    "CartService",
    "CheckoutResult",
    "CheckoutService",
    "OrderDetails",
    "OrderService",
    "CheckoutSessionResult",
    "PaymentService",
    "RefundResult",
    "VerifySessionResult",
    "PaymentReconciler",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "EventStatus",
    "StripeSignatureVerifier",
    "WebhookResult",
    "WebhookService",
]
