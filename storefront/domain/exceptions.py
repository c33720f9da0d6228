"""Domain exceptions.

All domain-level errors that represent business rule violations.
These exceptions are raised by entities, state machines and application
services when invariants are violated or invalid operations are attempted.

Every domain error carries a machine-readable ``error_code`` that the API
layer maps to an HTTP status. Payment provider failures are deliberately
not part of this hierarchy (see ``storefront.infrastructure.payment_gateway``).
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Input Errors
# ============================================================================


class ValidationError(DomainError):
    """Raised for malformed or missing input. Never has side effects."""

    error_code = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Raised when an invalid quantity is provided."""

    error_code = "INVALID_QUANTITY"

    def __init__(
        self, quantity: Any, reason: str = "Quantity must be a positive integer"
    ) -> None:
        """Initialize invalid quantity error.

        Args:
            quantity: The invalid quantity value.
            reason: Explanation of why the quantity is invalid.
        """
        super().__init__(
            f"Invalid quantity {quantity!r}: {reason}",
            details={"quantity": quantity, "reason": reason},
        )


# ============================================================================
# Lookup Errors
# ============================================================================


class NotFoundError(DomainError):
    """Raised when a referenced entity does not exist."""

    error_code = "NOT_FOUND"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize not found error.

        Args:
            entity_type: Type of entity (e.g., "Product", "Order").
            entity_id: ID that was looked up.
            message: Optional message overriding the default one.
            details: Optional extra context merged into the details.
        """
        super().__init__(
            message or f"{entity_type} {entity_id} not found",
            details={"entity_type": entity_type, "entity_id": entity_id, **(details or {})},
        )


class ProductNotFoundError(NotFoundError):
    """Raised when a product does not exist."""

    error_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str) -> None:
        super().__init__("Product", product_id)


class CartItemNotFoundError(NotFoundError):
    """Raised when a cart item is not found."""

    error_code = "CART_ITEM_NOT_FOUND"

    def __init__(self, cart_id: str, item_id: str) -> None:
        """Initialize cart item not found error.

        Args:
            cart_id: ID of the cart.
            item_id: ID of the item.
        """
        super().__init__(
            "CartItem",
            item_id,
            message=f"Item {item_id} not found in cart {cart_id}",
            details={"cart_id": cart_id},
        )


class OrderNotFoundError(NotFoundError):
    """Raised when an order does not exist."""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str) -> None:
        super().__init__("Order", order_id)


# ============================================================================
# Access Errors
# ============================================================================


class AuthorizationError(DomainError):
    """Raised when the caller does not own the resource it acts on."""

    error_code = "FORBIDDEN"

    def __init__(self, resource_type: str, resource_id: str, user_id: str | None) -> None:
        """Initialize authorization error.

        Args:
            resource_type: Type of the protected resource.
            resource_id: ID of the protected resource.
            user_id: Identity of the caller that was refused.
        """
        super().__init__(
            f"Caller is not allowed to access {resource_type} {resource_id}",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "user_id": user_id,
            },
        )


# ============================================================================
# Checkout Errors
# ============================================================================


class CheckoutError(DomainError):
    """Base class for checkout failures. Each leaves state unchanged."""

    pass


class EmptyCartError(CheckoutError):
    """Raised when trying to checkout a missing or empty cart."""

    error_code = "EMPTY_CART"

    def __init__(self, owner_id: str) -> None:
        """Initialize empty cart error.

        Args:
            owner_id: Identity whose cart was empty.
        """
        super().__init__(
            f"Cannot checkout an empty cart for {owner_id}",
            details={"owner_id": owner_id},
        )


class OutOfStockError(CheckoutError):
    """Raised when live stock cannot cover a requested quantity."""

    error_code = "OUT_OF_STOCK"

    def __init__(self, product_id: str, title: str, requested: int, available: int) -> None:
        """Initialize out of stock error.

        Args:
            product_id: Offending product.
            title: Product title for the message.
            requested: Quantity requested across the cart.
            available: Stock that was read.
        """
        super().__init__(
            f"Insufficient stock for '{title}': requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "title": title,
                "requested": requested,
                "available": available,
            },
        )


class ConcurrentStockConflictError(CheckoutError):
    """Raised when a conditional stock decrement matched no row."""

    error_code = "STOCK_CONFLICT"

    def __init__(self, product_id: str, requested: int) -> None:
        """Initialize concurrent stock conflict error.

        Args:
            product_id: Product whose decrement failed.
            requested: Quantity that could not be reserved.
        """
        super().__init__(
            f"Stock for product {product_id} changed during checkout; retry the checkout",
            details={"product_id": product_id, "requested": requested},
        )


# ============================================================================
# State Errors
# ============================================================================


class InvalidStateError(DomainError):
    """Raised when an operation is not valid for the current order state."""

    error_code = "INVALID_STATE"


class InvalidStateTransitionError(InvalidStateError):
    """Raised when an invalid state transition is attempted.

    This error indicates that the requested operation cannot be performed
    in the current state of the entity.
    """

    error_code = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "Order", "Payment").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


class PreconditionError(DomainError):
    """Raised when data required by an operation is missing on the entity."""

    error_code = "PRECONDITION_FAILED"


class ConcurrentUpdateError(DomainError):
    """Raised when a compare-and-set update keeps losing to other writers."""

    error_code = "CONCURRENT_UPDATE"

    def __init__(self, entity_type: str, entity_id: str, attempts: int) -> None:
        """Initialize concurrent update error.

        Args:
            entity_type: Type of entity being updated.
            entity_id: ID of the entity.
            attempts: Number of attempts made.
        """
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"{attempts} times; giving up",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "attempts": attempts,
            },
        )
