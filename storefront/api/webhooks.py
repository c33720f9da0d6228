"""Webhook receiver endpoints.

Provides:
- POST /webhooks/stripe - receive payment gateway events
- Stripe signature verification before any parsing
- Deduplication by event id
- Out-of-order tolerance
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from storefront.api.dependencies import get_webhook_service
from storefront.api.schemas import ErrorResponse, WebhookResponse
from storefront.application.webhook_service import EventStatus, WebhookService

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/stripe",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": WebhookResponse},
    },
    summary="Receive Stripe webhook",
    description="Receive and apply Stripe events with signature verification.",
)
async def receive_stripe_webhook(
    request: Request,
    service: Annotated[WebhookService, Depends(get_webhook_service)],
    stripe_signature: Annotated[str | None, Header()] = None,
) -> WebhookResponse | JSONResponse:
    """Receive and process a webhook from Stripe.

    Duplicate and inapplicable events are acknowledged with 200 so Stripe
    stops redelivering them; a processing failure answers 500 so Stripe
    retries later.

    Args:
        request: The incoming request.
        service: Webhook service.
        stripe_signature: ``Stripe-Signature`` header.

    Returns:
        WebhookResponse with processing result.

    Raises:
        HTTPException: If signature verification fails.
    """
    # Signature covers the exact raw bytes
    body = await request.body()

    if not service.verify_signature(body, stripe_signature):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error_code": "INVALID_SIGNATURE",
                "message": "Webhook signature verification failed",
            },
        )

    result = await service.process_payload(body)

    response = WebhookResponse(
        success=result.success,
        event_id=result.event_id,
        status=result.status.value,
        message=result.message,
        order_id=result.order_id,
    )
    if result.status == EventStatus.FAILED:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(),
        )
    return response
