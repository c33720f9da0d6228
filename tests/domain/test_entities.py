"""Tests for domain entities."""

import pytest

from storefront.domain import (
    Cart,
    CartItemNotFoundError,
    EmptyCartError,
    InvalidQuantityError,
    InvalidStateTransitionError,
    Order,
    OrderStatus,
    PaymentStatus,
    ProductSnapshot,
    ValidationError,
)


@pytest.fixture
def mug() -> ProductSnapshot:
    return ProductSnapshot(product_id="mug", title="Ceramic Mug", price_cents=2000, stock=5)


@pytest.fixture
def shirt() -> ProductSnapshot:
    return ProductSnapshot(product_id="shirt", title="T-Shirt", price_cents=1550, stock=10)


@pytest.fixture
def cart() -> Cart:
    return Cart.create(owner_id="user-1")


# ============================================================================
# Cart Tests
# ============================================================================


class TestCartAddItem:
    """Tests for adding items to a cart."""

    def test_new_cart_is_empty(self, cart: Cart) -> None:
        assert cart.is_empty
        assert cart.sub_total_cents == 0
        assert cart.item_count == 0

    def test_add_item_snapshots_price_and_title(self, cart: Cart, mug: ProductSnapshot) -> None:
        item = cart.add_item(mug, quantity=2)

        assert item.title == "Ceramic Mug"
        assert item.price_cents == 2000
        assert item.quantity == 2
        assert cart.sub_total_cents == 4000

    def test_same_product_and_options_merge(self, cart: Cart, shirt: ProductSnapshot) -> None:
        """Adding the same product with identical options sums quantities."""
        cart.add_item(shirt, quantity=1, selected_options={"size": "M", "color": "red"})
        cart.add_item(shirt, quantity=2, selected_options={"color": "red", "size": "M"})

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3
        assert cart.sub_total_cents == 3 * 1550

    def test_different_options_make_separate_lines(self, cart: Cart, shirt: ProductSnapshot) -> None:
        cart.add_item(shirt, selected_options={"size": "M"})
        cart.add_item(shirt, selected_options={"size": "L"})

        assert len(cart.items) == 2
        assert cart.quantities_by_product() == {"shirt": 2}

    def test_merge_refreshes_price_snapshot(self, cart: Cart, mug: ProductSnapshot) -> None:
        """A merge overwrites the line's price with the current product price."""
        cart.add_item(mug, quantity=1)
        repriced = ProductSnapshot(product_id="mug", title="Ceramic Mug", price_cents=2500, stock=5)
        cart.add_item(repriced, quantity=1)

        assert cart.items[0].price_cents == 2500
        assert cart.sub_total_cents == 5000

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True])
    def test_invalid_quantity_rejected(self, cart: Cart, mug: ProductSnapshot, quantity) -> None:
        with pytest.raises(InvalidQuantityError):
            cart.add_item(mug, quantity=quantity)
        assert cart.is_empty


class TestCartMutations:
    """Tests for updating, removing and clearing cart items."""

    def test_set_quantity_recomputes_subtotal(self, cart: Cart, mug: ProductSnapshot) -> None:
        item = cart.add_item(mug, quantity=1)

        cart.set_item_quantity(item.id, 4)

        assert cart.items[0].quantity == 4
        assert cart.sub_total_cents == 8000

    def test_set_quantity_zero_removes_item(self, cart: Cart, mug: ProductSnapshot) -> None:
        item = cart.add_item(mug, quantity=1)

        assert cart.set_item_quantity(item.id, 0) is None
        assert cart.is_empty
        assert cart.sub_total_cents == 0

    def test_set_quantity_unknown_item_raises(self, cart: Cart) -> None:
        with pytest.raises(CartItemNotFoundError):
            cart.set_item_quantity("missing", 2)

    def test_remove_unknown_item_raises(self, cart: Cart) -> None:
        with pytest.raises(CartItemNotFoundError) as exc_info:
            cart.remove_item("missing")
        assert exc_info.value.details["cart_id"] == cart.id

    def test_clear_returns_removed_count(
        self, cart: Cart, mug: ProductSnapshot, shirt: ProductSnapshot
    ) -> None:
        cart.add_item(mug)
        cart.add_item(shirt)

        assert cart.clear() == 2
        assert cart.is_empty
        assert cart.sub_total_cents == 0

    def test_mutations_bump_version(self, cart: Cart, mug: ProductSnapshot) -> None:
        version = cart.version
        cart.add_item(mug)
        assert cart.version > version


# ============================================================================
# Order Tests
# ============================================================================


@pytest.fixture
def order(cart: Cart, mug: ProductSnapshot) -> Order:
    cart.add_item(mug, quantity=2)
    return Order.create_from_cart(cart, metadata={"email": "a@example.com"})


class TestOrderCreation:
    """Tests for creating orders from carts."""

    def test_order_snapshots_cart(self, order: Order) -> None:
        assert order.state == (OrderStatus.CREATED, PaymentStatus.PENDING)
        assert order.sub_total_cents == 4000
        assert order.items[0].title == "Ceramic Mug"
        assert order.items[0].quantity == 2
        assert order.metadata == {"email": "a@example.com"}

    def test_empty_cart_cannot_become_order(self, cart: Cart) -> None:
        with pytest.raises(EmptyCartError):
            Order.create_from_cart(cart)

    def test_order_is_independent_of_later_cart_changes(
        self, cart: Cart, mug: ProductSnapshot
    ) -> None:
        cart.add_item(mug, quantity=1)
        order = Order.create_from_cart(cart)

        cart.add_item(mug, quantity=5)

        assert order.sub_total_cents == 2000
        assert order.item_count == 1

    def test_order_number_uses_id_suffix(self, cart: Cart, mug: ProductSnapshot) -> None:
        cart.add_item(mug)
        order = Order.create_from_cart(cart, order_id="3f2a9c1e-0000-4000-8000-00000abc12ef")

        assert order.order_number == "ORD-BC12EF"


class TestOrderPaymentTransitions:
    """Tests for payment-driven order transitions."""

    def test_mark_paid(self, order: Order) -> None:
        assert order.mark_paid("pi_123", {"id": "cs_1"}) is True

        assert order.state == (OrderStatus.PROCESSING, PaymentStatus.PAID)
        assert order.payment.transaction_id == "pi_123"

    def test_mark_paid_twice_is_noop(self, order: Order) -> None:
        order.mark_paid("pi_123")
        version = order.version

        assert order.mark_paid("pi_123") is False
        assert order.version == version

    def test_mark_failed_cancels(self, order: Order) -> None:
        assert order.mark_failed() is True
        assert order.state == (OrderStatus.CANCELLED, PaymentStatus.FAILED)

    def test_paid_order_cannot_fail(self, order: Order) -> None:
        order.mark_paid("pi_123")

        with pytest.raises(InvalidStateTransitionError):
            order.mark_failed()
        assert order.state == (OrderStatus.PROCESSING, PaymentStatus.PAID)

    def test_cancelled_order_cannot_be_paid(self, order: Order) -> None:
        order.mark_failed()

        with pytest.raises(InvalidStateTransitionError):
            order.mark_paid("pi_123")

    def test_refund_requires_paid(self, order: Order) -> None:
        with pytest.raises(InvalidStateTransitionError):
            order.mark_refunded()

    def test_refund_from_delivered(self, order: Order) -> None:
        order.mark_paid("pi_123")
        order.advance_fulfillment(OrderStatus.SHIPPED)
        order.advance_fulfillment(OrderStatus.DELIVERED)

        assert order.mark_refunded() is True
        assert order.state == (OrderStatus.REFUNDED, PaymentStatus.REFUNDED)
        assert order.mark_refunded() is False

    def test_attach_session_only_while_pending(self, order: Order) -> None:
        order.attach_session("cs_1")
        assert order.payment.session_id == "cs_1"

        order.mark_paid("pi_123")
        with pytest.raises(ValidationError):
            order.attach_session("cs_2")


class TestOrderFulfillment:
    """Tests for admin fulfillment steps."""

    def test_unpaid_order_cannot_ship(self, order: Order) -> None:
        with pytest.raises(InvalidStateTransitionError):
            order.advance_fulfillment(OrderStatus.SHIPPED)

    def test_cannot_skip_shipping(self, order: Order) -> None:
        order.mark_paid("pi_123")

        with pytest.raises(InvalidStateTransitionError):
            order.advance_fulfillment(OrderStatus.DELIVERED)
