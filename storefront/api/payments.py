"""Payment API endpoints.

Provides:
- GET /payments/config - publishable key for the frontend
- POST /payments/checkout-session - checkout and open a hosted payment page
- GET /payments/verify/{session_id} - state of a session after redirect
- POST /payments/refund - refund a paid order
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from storefront.api.dependencies import get_identity, get_payment_service
from storefront.api.schemas import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    ErrorResponse,
    OrderResponse,
    PaymentConfigResponse,
    RefundRequest,
    RefundResponse,
    VerifySessionResponse,
)
from storefront.application.payment_service import PaymentService
from storefront.domain.value_objects import CallerIdentity
from storefront.infrastructure.config import settings

router = APIRouter(prefix="/payments", tags=["Payments"])

Identity = Annotated[CallerIdentity, Depends(get_identity)]
Service = Annotated[PaymentService, Depends(get_payment_service)]


@router.get(
    "/config",
    response_model=PaymentConfigResponse,
    summary="Get payment configuration",
)
async def get_payment_config() -> PaymentConfigResponse:
    """Get the public payment configuration."""
    return PaymentConfigResponse(
        publishable_key=settings.stripe_publishable_key,
        currency=settings.payment_currency,
    )


@router.post(
    "/checkout-session",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    summary="Start checkout session",
    description="Check out the cart and create a hosted payment page for the new order.",
)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    identity: Identity,
    service: Service,
) -> CheckoutSessionResponse:
    """Start a hosted checkout session.

    Args:
        request: Checkout metadata.
        identity: Calling user.
        service: Payment service.

    Returns:
        Order reference and the URL to redirect the customer to.
    """
    result = await service.start_checkout_session(identity, metadata=request.metadata)
    return CheckoutSessionResponse(
        order_id=result.order.id,
        order_number=result.order.order_number,
        session_id=result.session_id,
        redirect_url=result.redirect_url,
    )


@router.get(
    "/verify/{session_id}",
    response_model=VerifySessionResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    summary="Verify checkout session",
)
async def verify_session(
    session_id: str,
    identity: Identity,
    service: Service,
) -> VerifySessionResponse:
    """Report payment and session status after the customer returns.

    Order state only changes through webhooks; this endpoint reads.
    """
    result = await service.verify_session(identity, session_id)
    return VerifySessionResponse(
        session_id=result.session_id,
        payment_status=result.payment_status,
        session_status=result.session_status,
        order=OrderResponse.from_domain(result.order),
    )


@router.post(
    "/refund",
    response_model=RefundResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        412: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    summary="Refund order",
)
async def refund_order(
    request: RefundRequest,
    identity: Identity,
    service: Service,
) -> RefundResponse:
    """Refund a paid order, fully or partially.

    Args:
        request: Order, optional amount and reason.
        identity: Calling user.
        service: Payment service.

    Returns:
        Refund reference and the refunded order.
    """
    result = await service.refund_order(
        identity,
        order_id=request.order_id,
        amount_cents=request.amount_cents,
        reason=request.reason,
    )
    return RefundResponse(
        refund_id=result.refund_id,
        amount_cents=result.amount_cents,
        order=OrderResponse.from_domain(result.order),
    )
