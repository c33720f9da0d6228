"""Order API endpoints.

Provides endpoints for order lifecycle management:
- GET /orders - the caller's orders
- GET /orders/{id} - order details and status history
- PATCH /orders/{id}/status - advance fulfillment (admin)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from storefront.api.dependencies import get_identity, get_order_service
from storefront.api.schemas import (
    ErrorResponse,
    OrderResponse,
    OrdersListResponse,
    OrderStatusUpdateRequest,
)
from storefront.application.order_service import OrderService
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import CallerIdentity

router = APIRouter(prefix="/orders", tags=["Orders"])

Identity = Annotated[CallerIdentity, Depends(get_identity)]
Service = Annotated[OrderService, Depends(get_order_service)]


@router.get(
    "",
    response_model=OrdersListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List orders",
    description="Get the caller's orders, newest first, with optional status filter.",
)
async def list_orders(
    identity: Identity,
    service: Service,
    status: OrderStatus | None = Query(default=None, description="Filter by status"),
) -> OrdersListResponse:
    """List the caller's orders.

    Args:
        identity: Calling user.
        service: Order service.
        status: Filter by order status.

    Returns:
        The caller's orders.
    """
    orders = await service.list_orders(identity, status=status)
    return OrdersListResponse(
        items=[OrderResponse.from_domain(order) for order in orders],
        total=len(orders),
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Get order details",
)
async def get_order(order_id: str, identity: Identity, service: Service) -> OrderResponse:
    """Get an order with its status history."""
    details = await service.get_order(identity, order_id)
    return OrderResponse.from_domain(details.order, details.history)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Advance order fulfillment",
    description="Admin only. Moves a paid order processing -> shipped -> delivered.",
)
async def update_order_status(
    order_id: str,
    request: OrderStatusUpdateRequest,
    identity: Identity,
    service: Service,
) -> OrderResponse:
    """Advance an order to its next fulfillment status.

    Args:
        order_id: Order identifier.
        request: Target status.
        identity: Calling admin.
        service: Order service.

    Returns:
        Updated order.
    """
    order = await service.advance_fulfillment(identity, order_id, request.status)
    return OrderResponse.from_domain(order)
