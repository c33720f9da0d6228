"""Domain layer - Entities, value objects, state machines, gateway events.

This module exports the core domain building blocks following DDD patterns:

- **Entities**: Objects with identity (Cart, CartItem, Order)
- **Value Objects**: Immutable objects compared by value (ProductSnapshot, CallerIdentity)
- **State Machines**: Forward-only transitions (OrderStatus, PaymentStatus)
- **Gateway Events**: Tagged variants of inbound payment events
- **Exceptions**: Domain-specific errors and invariant violations

Example usage:
    from storefront.domain import Cart, ProductSnapshot

    cart = Cart.create(owner_id="user-1")
    product = ProductSnapshot(product_id="p-1", title="Mug", price_cents=2000, stock=5)
    cart.add_item(product, quantity=2)

    print(cart.sub_total_cents)  # 4000
"""

# Base classes
from storefront.domain.base import AggregateRoot, Entity, ValueObject

# Entities
from storefront.domain.entities import (
    Cart,
    CartItem,
    Order,
    OrderItem,
    PaymentRecord,
    new_id,
)

# Exceptions
from storefront.domain.exceptions import (
    AuthorizationError,
    CartItemNotFoundError,
    CheckoutError,
    ConcurrentStockConflictError,
    ConcurrentUpdateError,
    DomainError,
    EmptyCartError,
    InvalidQuantityError,
    InvalidStateError,
    InvalidStateTransitionError,
    NotFoundError,
    OrderNotFoundError,
    OutOfStockError,
    PreconditionError,
    ProductNotFoundError,
    ValidationError,
)

# Gateway events
from storefront.domain.gateway_events import (
    ChargeRefunded,
    GatewayEvent,
    PaymentFailed,
    PaymentSucceeded,
    UnhandledEvent,
)

# State Machines
from storefront.domain.state_machines import (
    OrderStatus,
    PaymentStatus,
    validate_fulfillment_transition,
    validate_order_transition,
    validate_payment_transition,
)

# Value Objects
from storefront.domain.value_objects import (
    CallerIdentity,
    ProductSnapshot,
    Role,
    options_key,
)

__all__ = [
    # Base
    "AggregateRoot",
    "Entity",
    "ValueObject",
    # Entities
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "PaymentRecord",
    "new_id",
    # Exceptions
    "AuthorizationError",
    "CartItemNotFoundError",
    "CheckoutError",
    "ConcurrentStockConflictError",
    "ConcurrentUpdateError",
    "DomainError",
    "EmptyCartError",
    "InvalidQuantityError",
    "InvalidStateError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "OrderNotFoundError",
    "OutOfStockError",
    "PreconditionError",
    "ProductNotFoundError",
    "ValidationError",
    # Gateway events
    "ChargeRefunded",
    "GatewayEvent",
    "PaymentFailed",
    "PaymentSucceeded",
    "UnhandledEvent",
    # State Machines
    "OrderStatus",
    "PaymentStatus",
    "validate_fulfillment_transition",
    "validate_order_transition",
    "validate_payment_transition",
    # Value Objects
    "CallerIdentity",
    "ProductSnapshot",
    "Role",
    "options_key",
]
