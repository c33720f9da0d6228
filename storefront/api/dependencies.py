"""FastAPI dependencies.

Builds application services per request from the shared session factory
and the payment gateway created at startup. Tests override
:func:`get_session_factory` and :func:`get_payment_gateway`.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.application.cart_service import CartService
from storefront.application.checkout_service import CheckoutService
from storefront.application.order_service import OrderService
from storefront.application.payment_service import PaymentService
from storefront.application.reconciliation import PaymentReconciler
from storefront.application.webhook_service import StripeSignatureVerifier, WebhookService
from storefront.domain.value_objects import CallerIdentity
from storefront.infrastructure import database
from storefront.infrastructure.config import settings
from storefront.infrastructure.payment_gateway import PaymentGateway, StripeGateway

SessionFactory = async_sessionmaker[AsyncSession]


def get_session_factory() -> SessionFactory:
    """Get the process-wide session factory."""
    return database.get_session_factory()


def get_payment_gateway(request: Request) -> PaymentGateway:
    """Get the payment gateway created at startup."""
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        gateway = StripeGateway(
            api_key=settings.stripe_secret_key,
            currency=settings.payment_currency,
        )
        request.app.state.payment_gateway = gateway
    return gateway


def get_identity(request: Request) -> CallerIdentity:
    """Get the caller identity established by the identity middleware.

    Raises:
        HTTPException: If the request carries no verified identity.
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "UNAUTHORIZED",
                "message": "Authentication required",
            },
        )
    return identity


# ============================================================================
# Service Builders
# ============================================================================


def get_cart_service(
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
) -> CartService:
    """Get cart service."""
    return CartService(session_factory)


def get_checkout_service(
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
) -> CheckoutService:
    """Get checkout service."""
    return CheckoutService(session_factory, currency=settings.payment_currency)


def get_reconciler(
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
) -> PaymentReconciler:
    """Get payment reconciler."""
    return PaymentReconciler(
        session_factory,
        max_attempts=settings.reconciliation_max_attempts,
    )


def get_order_service(
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
) -> OrderService:
    """Get order service."""
    return OrderService(session_factory)


def get_payment_service(
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
    gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
    checkout_service: Annotated[CheckoutService, Depends(get_checkout_service)],
    reconciler: Annotated[PaymentReconciler, Depends(get_reconciler)],
) -> PaymentService:
    """Get payment service."""
    return PaymentService(
        session_factory,
        gateway=gateway,
        checkout_service=checkout_service,
        reconciler=reconciler,
        frontend_url=settings.frontend_url,
        success_path=settings.checkout_success_path,
        cancel_path=settings.checkout_cancel_path,
        session_ttl_minutes=settings.checkout_session_ttl_minutes,
    )


def get_webhook_service(
    reconciler: Annotated[PaymentReconciler, Depends(get_reconciler)],
) -> WebhookService:
    """Get webhook service."""
    verifier = StripeSignatureVerifier(
        secret=settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance_seconds,
    )
    return WebhookService(verifier, reconciler)
