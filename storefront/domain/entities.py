"""Domain entities for the storefront.

Contains the two aggregates of the checkout pipeline:

- **Cart**: mutable pre-order container owned by one user. Its subtotal is
  derived and recomputed by every mutator.
- **Order**: immutable snapshot of a checkout attempt whose status and
  nested payment status move forward through the state machines.
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from storefront.domain.base import AggregateRoot, Entity, ValueObject
from storefront.domain.exceptions import (
    CartItemNotFoundError,
    EmptyCartError,
    InvalidQuantityError,
    ValidationError,
)
from storefront.domain.state_machines import (
    OrderStatus,
    PaymentStatus,
    validate_fulfillment_transition,
    validate_order_transition,
    validate_payment_transition,
)
from storefront.domain.value_objects import ProductSnapshot, options_key


def new_id() -> str:
    """Generate a new entity identifier."""
    return str(uuid4())


def validate_quantity(quantity: Any, allow_non_positive: bool = False) -> int:
    """Validate that quantity is an integer, and positive unless allowed."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(quantity, "Quantity must be an integer")
    if quantity <= 0 and not allow_non_positive:
        raise InvalidQuantityError(quantity)
    return quantity


# ============================================================================
# Cart Item Entity
# ============================================================================


@dataclass(eq=False)
class CartItem(Entity[str]):
    """A line in a shopping cart.

    CartItem is an entity that belongs to the Cart aggregate. Price and
    title are snapshots taken from the product when the item was last
    added or repriced.

    Attributes:
        id: Unique identifier for this cart item.
        product_id: Referenced product.
        title: Title snapshot.
        price_cents: Unit price snapshot in minor units.
        quantity: Number of units, always >= 1.
        selected_options: Options chosen for the product (size, color...).
        thumbnail: Optional image snapshot.
    """

    id: str
    product_id: str
    title: str
    price_cents: int
    quantity: int
    selected_options: dict[str, Any] = field(default_factory=dict)
    thumbnail: str | None = None

    def __post_init__(self) -> None:
        """Validate cart item constraints."""
        validate_quantity(self.quantity)

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity

    @property
    def options_key(self) -> str:
        return options_key(self.selected_options)

    def matches(self, product_id: str, selected_options: dict[str, Any] | None) -> bool:
        """Check whether this item is the same logical line.

        Args:
            product_id: Product to compare.
            selected_options: Options to compare.

        Returns:
            True if product and options are identical.
        """
        return self.product_id == product_id and self.options_key == options_key(
            selected_options
        )

    def apply_snapshot(self, product: ProductSnapshot) -> None:
        """Overwrite price and title with the product's current values."""
        self.price_cents = product.price_cents
        self.title = product.title
        self.thumbnail = product.thumbnail


# ============================================================================
# Cart Aggregate Root
# ============================================================================


@dataclass(kw_only=True, eq=False)
class Cart(AggregateRoot[str]):
    """Shopping cart aggregate root.

    Exactly one cart exists per user. ``sub_total_cents`` is read-only and
    is recomputed from the items at the end of every mutation.

    Attributes:
        id: Unique cart identifier.
        owner_id: User that owns this cart.
        items: Cart lines.
    """

    id: str
    owner_id: str
    items: list[CartItem] = field(default_factory=list)
    _sub_total_cents: int = field(default=0, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._recompute_sub_total()

    @classmethod
    def create(cls, owner_id: str, cart_id: str | None = None) -> "Cart":
        """Create a new empty cart.

        Args:
            owner_id: User that owns the cart.
            cart_id: Optional pre-generated cart ID.

        Returns:
            New Cart instance.
        """
        return cls(id=cart_id or new_id(), owner_id=owner_id)

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def sub_total_cents(self) -> int:
        """Sum of line totals, maintained by every mutator."""
        return self._sub_total_cents

    @property
    def item_count(self) -> int:
        """Get total number of units (sum of quantities)."""
        return sum(item.quantity for item in self.items)

    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0

    def get_item(self, item_id: str) -> CartItem | None:
        """Find item by ID.

        Args:
            item_id: Cart item identifier.

        Returns:
            CartItem if found, None otherwise.
        """
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_item(
        self, product_id: str, selected_options: dict[str, Any] | None
    ) -> CartItem | None:
        """Find the line for a product and options combination."""
        for item in self.items:
            if item.matches(product_id, selected_options):
                return item
        return None

    def quantities_by_product(self) -> dict[str, int]:
        """Aggregate requested quantities per product across option variants.

        Returns:
            Mapping of product id to total quantity.
        """
        totals: dict[str, int] = {}
        for item in self.items:
            totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
        return totals

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_item(
        self,
        product: ProductSnapshot,
        quantity: int = 1,
        selected_options: dict[str, Any] | None = None,
    ) -> CartItem:
        """Add a product to the cart.

        An existing line with the same product and identical options is
        merged: quantities are summed (floor 1) and the snapshot refreshed.

        Args:
            product: Current product state.
            quantity: Number of units to add.
            selected_options: Chosen options for the product.

        Returns:
            The new or updated CartItem.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer.
        """
        validate_quantity(quantity)
        options = dict(selected_options or {})

        item = self.find_item(product.product_id, options)
        if item is not None:
            item.quantity = max(1, item.quantity + quantity)
            item.apply_snapshot(product)
        else:
            item = CartItem(
                id=new_id(),
                product_id=product.product_id,
                title=product.title,
                price_cents=product.price_cents,
                quantity=quantity,
                selected_options=options,
                thumbnail=product.thumbnail,
            )
            self.items.append(item)

        self._mutated()
        return item

    def set_item_quantity(self, item_id: str, quantity: int) -> CartItem | None:
        """Replace the quantity of an item, removing it when quantity <= 0.

        Args:
            item_id: ID of item to update.
            quantity: New quantity.

        Returns:
            Updated CartItem, or None if the item was removed.

        Raises:
            CartItemNotFoundError: If item is not in cart.
            InvalidQuantityError: If quantity is not an integer.
        """
        validate_quantity(quantity, allow_non_positive=True)
        item = self.get_item(item_id)
        if item is None:
            raise CartItemNotFoundError(self.id, item_id)

        if quantity <= 0:
            self.items.remove(item)
            self._mutated()
            return None

        item.quantity = quantity
        self._mutated()
        return item

    def remove_item(self, item_id: str) -> CartItem:
        """Remove an item from the cart.

        Raises:
            CartItemNotFoundError: If item is not in cart.
        """
        item = self.get_item(item_id)
        if item is None:
            raise CartItemNotFoundError(self.id, item_id)

        self.items.remove(item)
        self._mutated()
        return item

    def clear(self) -> int:
        """Remove all items from cart.

        Returns:
            Number of lines removed.
        """
        count = len(self.items)
        self.items.clear()
        self._mutated()
        return count

    def reprice(self, product: ProductSnapshot) -> None:
        """Refresh snapshots of every line referencing the product."""
        for item in self.items:
            if item.product_id == product.product_id:
                item.apply_snapshot(product)
        self._mutated()

    def _recompute_sub_total(self) -> None:
        self._sub_total_cents = sum(item.line_total_cents for item in self.items)

    def _mutated(self) -> None:
        self._recompute_sub_total()
        self._touch()


# ============================================================================
# Order Item
# ============================================================================


@dataclass(frozen=True)
class OrderItem(ValueObject):
    """Immutable line snapshot copied from a cart at checkout.

    Attributes:
        product_id: Referenced product.
        title: Title at checkout time.
        price_cents: Revalidated unit price at checkout time.
        quantity: Units ordered.
        selected_options: Options chosen.
        thumbnail: Optional image snapshot.
    """

    product_id: str
    title: str
    price_cents: int
    quantity: int
    selected_options: dict[str, Any] = field(default_factory=dict)
    thumbnail: str | None = None

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity

    @classmethod
    def from_cart_item(cls, cart_item: CartItem) -> "OrderItem":
        """Create an order item from a cart item.

        Args:
            cart_item: Source cart item.

        Returns:
            New OrderItem with copied snapshot.
        """
        return cls(
            product_id=cart_item.product_id,
            title=cart_item.title,
            price_cents=cart_item.price_cents,
            quantity=cart_item.quantity,
            selected_options=dict(cart_item.selected_options),
            thumbnail=cart_item.thumbnail,
        )


# ============================================================================
# Payment Record
# ============================================================================


@dataclass
class PaymentRecord:
    """Payment sub-state nested in an order.

    Attributes:
        status: Payment state machine status.
        gateway: Gateway identifier (e.g., "stripe").
        transaction_id: Gateway payment intent id once known.
        session_id: Gateway checkout session id once created.
        raw: Last raw gateway payload applied to the order.
    """

    status: PaymentStatus = PaymentStatus.PENDING
    gateway: str = "stripe"
    transaction_id: str | None = None
    session_id: str | None = None
    raw: dict[str, Any] | None = None


# ============================================================================
# Order Aggregate Root
# ============================================================================


@dataclass(kw_only=True, eq=False)
class Order(AggregateRoot[str]):
    """Order aggregate root.

    Items are frozen at creation, so the subtotal is derived from them and
    cannot drift. After creation only ``status`` and ``payment.status``
    change, and only through the transition methods below.

    Attributes:
        id: Unique order identifier.
        owner_id: Ordering user; None for guest-designed variants.
        items: Immutable item snapshot.
        status: Fulfillment status.
        payment: Nested payment record.
        metadata: Free-form checkout metadata (shipping info, email...).
    """

    id: str
    owner_id: str | None
    items: tuple[OrderItem, ...]
    status: OrderStatus = OrderStatus.CREATED
    payment: PaymentRecord = field(default_factory=PaymentRecord)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create_from_cart(
        cls,
        cart: Cart,
        gateway: str = "stripe",
        metadata: dict[str, Any] | None = None,
        order_id: str | None = None,
    ) -> "Order":
        """Create a pending order from a cart.

        Args:
            cart: Cart whose items are snapshotted.
            gateway: Payment gateway hint recorded on the payment.
            metadata: Optional checkout metadata.
            order_id: Optional pre-generated order ID.

        Returns:
            New Order in (created, pending).

        Raises:
            EmptyCartError: If the cart has no items.
        """
        if cart.is_empty:
            raise EmptyCartError(cart.owner_id)

        return cls(
            id=order_id or new_id(),
            owner_id=cart.owner_id,
            items=tuple(OrderItem.from_cart_item(item) for item in cart.items),
            payment=PaymentRecord(gateway=gateway),
            metadata=dict(metadata or {}),
        )

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def sub_total_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    @property
    def order_number(self) -> str:
        """Short display reference, e.g. ``ORD-3FA2C1``."""
        return f"ORD-{self.id.replace('-', '')[-6:].upper()}"

    @property
    def state(self) -> tuple[OrderStatus, PaymentStatus]:
        """Combined (status, payment status) pair used for compare-and-set."""
        return self.status, self.payment.status

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def quantities_by_product(self) -> dict[str, int]:
        """Aggregate ordered quantities per product."""
        totals: dict[str, int] = {}
        for item in self.items:
            totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
        return totals

    # -------------------------------------------------------------------------
    # Payment Transitions
    # -------------------------------------------------------------------------

    def attach_session(self, session_id: str) -> None:
        """Record the gateway checkout session created for this order."""
        if self.payment.status != PaymentStatus.PENDING:
            raise ValidationError(
                f"Order {self.id} already left pending payment",
                details={"order_id": self.id, "payment_status": self.payment.status.value},
            )
        self.payment.session_id = session_id
        self._touch()

    def mark_paid(self, transaction_id: str | None, raw: dict[str, Any] | None = None) -> bool:
        """Apply a gateway success: (created, pending) -> (processing, paid).

        Args:
            transaction_id: Gateway payment intent id.
            raw: Raw gateway payload.

        Returns:
            True if applied, False if the payment was already paid.

        Raises:
            InvalidStateTransitionError: If the order cannot become paid.
        """
        if self.payment.status == PaymentStatus.PAID:
            return False

        self._transition(OrderStatus.PROCESSING, PaymentStatus.PAID)
        if transaction_id:
            self.payment.transaction_id = transaction_id
        self.payment.raw = raw
        return True

    def mark_failed(self, raw: dict[str, Any] | None = None) -> bool:
        """Apply a gateway failure: (created, pending) -> (cancelled, failed).

        Returns:
            True if applied, False if the payment had already failed.

        Raises:
            InvalidStateTransitionError: If the order cannot fail anymore.
        """
        if self.payment.status == PaymentStatus.FAILED:
            return False

        self._transition(OrderStatus.CANCELLED, PaymentStatus.FAILED)
        self.payment.raw = raw
        return True

    def mark_refunded(self, raw: dict[str, Any] | None = None) -> bool:
        """Apply a refund: (*, paid) -> (refunded, refunded).

        Returns:
            True if applied, False if the payment was already refunded.

        Raises:
            InvalidStateTransitionError: If the payment is not paid.
        """
        if self.payment.status == PaymentStatus.REFUNDED:
            return False

        self._transition(OrderStatus.REFUNDED, PaymentStatus.REFUNDED)
        if raw is not None:
            self.payment.raw = raw
        return True

    # -------------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------------

    def advance_fulfillment(self, target: OrderStatus) -> None:
        """Move a paid order one fulfillment step forward.

        Raises:
            InvalidStateTransitionError: If target is not the next step.
        """
        validate_fulfillment_transition(self.id, self.status, target)
        self.status = target
        self._touch()

    def _transition(self, status: OrderStatus, payment_status: PaymentStatus) -> None:
        validate_payment_transition(self.id, self.payment.status, payment_status)
        validate_order_transition(self.id, self.status, status)
        self.status = status
        self.payment.status = payment_status
        self._touch()
