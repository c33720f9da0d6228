"""Cart API endpoints.

Provides endpoints for the caller's cart:
- GET /cart - current cart (created on first access)
- POST /cart/items - add a product
- PATCH /cart/items/{item_id} - replace an item's quantity
- DELETE /cart/items/{item_id} - remove an item
- DELETE /cart - empty the cart
- POST /cart/checkout - turn the cart into a pending order
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from storefront.api.dependencies import get_cart_service, get_checkout_service, get_identity
from storefront.api.schemas import (
    AddCartItemRequest,
    CartResponse,
    CheckoutRequest,
    ErrorResponse,
    OrderResponse,
    UpdateCartItemRequest,
)
from storefront.application.cart_service import CartService
from storefront.application.checkout_service import CheckoutService
from storefront.domain.value_objects import CallerIdentity

router = APIRouter(prefix="/cart", tags=["Cart"])

Identity = Annotated[CallerIdentity, Depends(get_identity)]
Service = Annotated[CartService, Depends(get_cart_service)]


@router.get(
    "",
    response_model=CartResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Get cart",
)
async def get_cart(identity: Identity, service: Service) -> CartResponse:
    """Get the caller's cart, creating an empty one on first access."""
    cart = await service.get_or_create(identity)
    return CartResponse.from_domain(cart)


@router.post(
    "/items",
    response_model=CartResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Add item to cart",
    description="Add a product; an existing line with the same options is merged.",
)
async def add_item(
    request: AddCartItemRequest,
    identity: Identity,
    service: Service,
) -> CartResponse:
    """Add a product to the caller's cart.

    Args:
        request: Product, quantity and options.
        identity: Calling user.
        service: Cart service.

    Returns:
        Updated cart.
    """
    cart = await service.add_item(
        identity,
        product_id=request.product_id,
        quantity=request.quantity,
        selected_options=request.selected_options,
    )
    return CartResponse.from_domain(cart)


@router.patch(
    "/items/{item_id}",
    response_model=CartResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Update item quantity",
)
async def update_item(
    item_id: str,
    request: UpdateCartItemRequest,
    identity: Identity,
    service: Service,
) -> CartResponse:
    """Replace an item's quantity; zero or less removes the item."""
    cart = await service.set_item_quantity(identity, item_id, request.quantity)
    return CartResponse.from_domain(cart)


@router.delete(
    "/items/{item_id}",
    response_model=CartResponse,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Remove item from cart",
)
async def remove_item(item_id: str, identity: Identity, service: Service) -> CartResponse:
    """Remove an item from the caller's cart."""
    cart = await service.remove_item(identity, item_id)
    return CartResponse.from_domain(cart)


@router.delete(
    "",
    response_model=CartResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Clear cart",
)
async def clear_cart(identity: Identity, service: Service) -> CartResponse:
    """Remove every item from the caller's cart."""
    cart = await service.clear(identity)
    return CartResponse.from_domain(cart)


@router.post(
    "/checkout",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Checkout cart",
    description=(
        "Revalidate stock and prices, reserve stock and create a pending order. "
        "Use POST /payments/checkout-session to also open a payment page."
    ),
)
async def checkout(
    request: CheckoutRequest,
    identity: Identity,
    service: Annotated[CheckoutService, Depends(get_checkout_service)],
) -> OrderResponse:
    """Check out the caller's cart.

    Args:
        request: Payment hint and checkout metadata.
        identity: Calling user.
        service: Checkout service.

    Returns:
        The new order in (created, pending).
    """
    result = await service.checkout(
        identity,
        payment_hint=request.payment_hint,
        metadata=request.metadata,
    )
    return OrderResponse.from_domain(result.order)
