"""API schemas for the storefront API.

Pydantic models for request/response validation and serialization.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, StrictInt

from storefront.domain.entities import Cart, CartItem, Order, OrderItem
from storefront.domain.state_machines import OrderStatus, PaymentStatus


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(
        default_factory=dict, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


# ============================================================================
# Cart Schemas
# ============================================================================


class AddCartItemRequest(BaseModel):
    """Request to add a product to the cart."""

    product_id: str = Field(..., min_length=1, description="Product to add")
    quantity: StrictInt = Field(default=1, description="Units to add (positive)")
    selected_options: dict[str, Any] = Field(
        default_factory=dict, description="Chosen product options (size, color...)"
    )


class UpdateCartItemRequest(BaseModel):
    """Request to replace a cart item's quantity. Zero or less removes it."""

    quantity: StrictInt = Field(..., description="New quantity")


class CartItemSchema(BaseModel):
    """Cart line in responses."""

    id: str
    product_id: str
    title: str
    price_cents: int
    quantity: int
    line_total_cents: int
    selected_options: dict[str, Any]
    thumbnail: str | None = None

    @classmethod
    def from_domain(cls, item: CartItem) -> "CartItemSchema":
        return cls(
            id=item.id,
            product_id=item.product_id,
            title=item.title,
            price_cents=item.price_cents,
            quantity=item.quantity,
            line_total_cents=item.line_total_cents,
            selected_options=item.selected_options,
            thumbnail=item.thumbnail,
        )


class CartResponse(BaseModel):
    """Cart with derived subtotal."""

    id: str
    owner_id: str
    items: list[CartItemSchema]
    item_count: int
    sub_total_cents: int
    version: int
    updated_at: datetime

    @classmethod
    def from_domain(cls, cart: Cart) -> "CartResponse":
        return cls(
            id=cart.id,
            owner_id=cart.owner_id,
            items=[CartItemSchema.from_domain(item) for item in cart.items],
            item_count=cart.item_count,
            sub_total_cents=cart.sub_total_cents,
            version=cart.version,
            updated_at=cart.updated_at,
        )


class CheckoutRequest(BaseModel):
    """Request to check out the cart without opening a payment session."""

    payment_hint: str = Field(default="stripe", description="Gateway to pay with")
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Shipping info, email and other checkout data"
    )


# ============================================================================
# Order Schemas
# ============================================================================


class OrderItemSchema(BaseModel):
    """Order line snapshot."""

    product_id: str
    title: str
    price_cents: int
    quantity: int
    line_total_cents: int
    selected_options: dict[str, Any]
    thumbnail: str | None = None

    @classmethod
    def from_domain(cls, item: OrderItem) -> "OrderItemSchema":
        return cls(
            product_id=item.product_id,
            title=item.title,
            price_cents=item.price_cents,
            quantity=item.quantity,
            line_total_cents=item.line_total_cents,
            selected_options=item.selected_options,
            thumbnail=item.thumbnail,
        )


class PaymentSchema(BaseModel):
    """Payment sub-state of an order."""

    status: PaymentStatus
    gateway: str
    transaction_id: str | None = None
    session_id: str | None = None


class OrderStatusHistorySchema(BaseModel):
    """One recorded status change."""

    from_status: str | None = None
    to_status: str
    from_payment_status: str | None = None
    to_payment_status: str
    actor: str | None = None
    reason: str | None = None
    created_at: datetime


class OrderResponse(BaseModel):
    """Order details."""

    id: str
    order_number: str
    owner_id: str | None
    status: OrderStatus
    payment: PaymentSchema
    items: list[OrderItemSchema]
    item_count: int
    sub_total_cents: int
    metadata: dict[str, Any]
    version: int
    created_at: datetime
    updated_at: datetime
    status_history: list[OrderStatusHistorySchema] = Field(default_factory=list)

    @classmethod
    def from_domain(
        cls, order: Order, history: list[dict[str, Any]] | None = None
    ) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            owner_id=order.owner_id,
            status=order.status,
            payment=PaymentSchema(
                status=order.payment.status,
                gateway=order.payment.gateway,
                transaction_id=order.payment.transaction_id,
                session_id=order.payment.session_id,
            ),
            items=[OrderItemSchema.from_domain(item) for item in order.items],
            item_count=order.item_count,
            sub_total_cents=order.sub_total_cents,
            metadata=order.metadata,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at,
            status_history=[OrderStatusHistorySchema(**entry) for entry in history or []],
        )


class OrdersListResponse(BaseModel):
    """List of the caller's orders."""

    items: list[OrderResponse]
    total: int


class OrderStatusUpdateRequest(BaseModel):
    """Request to advance an order's fulfillment status."""

    status: OrderStatus = Field(..., description="Next status: shipped or delivered")


# ============================================================================
# Payment Schemas
# ============================================================================


class PaymentConfigResponse(BaseModel):
    """Public payment configuration for the frontend."""

    publishable_key: str
    currency: str


class CheckoutSessionRequest(BaseModel):
    """Request to start a hosted checkout session."""

    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Shipping info and checkout data; email prefills payment"
    )


class CheckoutSessionResponse(BaseModel):
    """Hosted checkout session for a new order."""

    order_id: str
    order_number: str
    session_id: str
    redirect_url: str


class VerifySessionResponse(BaseModel):
    """Live state of a checkout session."""

    session_id: str
    payment_status: str
    session_status: str | None = None
    order: OrderResponse


class RefundRequest(BaseModel):
    """Request to refund a paid order."""

    order_id: str = Field(..., min_length=1)
    amount_cents: StrictInt | None = Field(
        default=None, description="Partial amount; omit to refund the subtotal"
    )
    reason: str | None = Field(default=None, max_length=500)


class RefundResponse(BaseModel):
    """Result of a refund."""

    refund_id: str
    amount_cents: int
    order: OrderResponse


# ============================================================================
# Webhook Schemas
# ============================================================================


class WebhookResponse(BaseModel):
    """Response to webhook delivery."""

    success: bool = Field(..., description="Whether event was accepted")
    event_id: str = Field(..., description="Event ID")
    status: str = Field(..., description="Event status (processed, duplicate, ignored, deferred, failed)")
    message: str = Field(..., description="Status message")
    order_id: str | None = Field(default=None, description="Order the event applied to")
