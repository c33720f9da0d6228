"""State machines for orders and payments.

An order carries two coupled state machines: the fulfillment status of
the order itself and the status of its nested payment record. Both only
move forward; terminal states accept no further transitions.
"""

from enum import Enum

from storefront.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order lifecycle states.

    State diagram:
        CREATED ─────────────────────────────────────► CANCELLED
          │
          │ payment succeeded
          ▼
        PROCESSING ──────────────────────────────────► REFUNDED
          │                                              ▲
          │ ship (admin)                                 │
          ▼                                              │
        SHIPPED ─────────────────────────────────────►───┤
          │                                              │
          │ deliver (admin)                              │
          ▼                                              │
        DELIVERED ───────────────────────────────────►───┘
    """

    CREATED = "created"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get list of valid target states, in declaration order.

        Returns:
            List of states that can be transitioned to.
        """
        targets = _ORDER_TRANSITIONS.get(self, set())
        return [status for status in OrderStatus if status in targets]

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no further transitions are possible.
        """
        return len(_ORDER_TRANSITIONS.get(self, set())) == 0

    def next_fulfillment_status(self) -> "OrderStatus | None":
        """Get the single forward fulfillment step from this state.

        Returns:
            The next fulfillment state, or None if there is none.
        """
        return _FULFILLMENT_STEPS.get(self)


# Order state transitions (defined outside enum to avoid Enum restrictions)
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.CREATED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.REFUNDED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal state
    OrderStatus.REFUNDED: set(),  # Terminal state
}

# Transitions an administrator may drive by hand
_FULFILLMENT_STEPS: dict[OrderStatus, OrderStatus] = {
    OrderStatus.PROCESSING: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.DELIVERED,
}


# ============================================================================
# Payment State Machine
# ============================================================================


class PaymentStatus(str, Enum):
    """Payment lifecycle states.

    State diagram:
        PENDING ──── failure event ────► FAILED
          │
          │ success event
          ▼
        PAID ──── refund ──────────────► REFUNDED
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _PAYMENT_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["PaymentStatus"]:
        """Get list of valid target states, in declaration order.

        Returns:
            List of states that can be transitioned to.
        """
        targets = _PAYMENT_TRANSITIONS.get(self, set())
        return [status for status in PaymentStatus if status in targets]

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no further transitions are possible.
        """
        return len(_PAYMENT_TRANSITIONS.get(self, set())) == 0


_PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),  # Terminal state
    PaymentStatus.REFUNDED: set(),  # Terminal state
}


# ============================================================================
# Validation Helpers
# ============================================================================


def validate_order_transition(
    order_id: str,
    current: OrderStatus,
    target: OrderStatus,
) -> None:
    """Validate an order status transition.

    Args:
        order_id: ID of the order.
        current: Current order status.
        target: Requested order status.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed.
    """
    if not current.can_transition_to(target):
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current.value,
            target_state=target.value,
            allowed_transitions=[s.value for s in current.allowed_transitions()],
        )


def validate_payment_transition(
    order_id: str,
    current: PaymentStatus,
    target: PaymentStatus,
) -> None:
    """Validate a payment status transition.

    Args:
        order_id: ID of the order owning the payment.
        current: Current payment status.
        target: Requested payment status.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed.
    """
    if not current.can_transition_to(target):
        raise InvalidStateTransitionError(
            entity_type="Payment",
            entity_id=order_id,
            current_state=current.value,
            target_state=target.value,
            allowed_transitions=[s.value for s in current.allowed_transitions()],
        )


def validate_fulfillment_transition(
    order_id: str,
    current: OrderStatus,
    target: OrderStatus,
) -> None:
    """Validate a manual fulfillment step (ship or deliver).

    Only the single next step is accepted; cancellations and refunds go
    through the payment flows instead.

    Args:
        order_id: ID of the order.
        current: Current order status.
        target: Requested order status.

    Raises:
        InvalidStateTransitionError: If target is not the next fulfillment step.
    """
    step = current.next_fulfillment_status()
    if step is None or step != target:
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current.value,
            target_state=target.value,
            allowed_transitions=[step.value] if step else [],
        )
