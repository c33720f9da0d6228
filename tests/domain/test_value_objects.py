"""Tests for domain value objects."""

import pytest

from storefront.domain import CallerIdentity, ProductSnapshot, Role, ValidationError, options_key


class TestCallerIdentity:
    """Tests for CallerIdentity value object."""

    def test_defaults_to_user_role(self) -> None:
        identity = CallerIdentity(user_id="user-1")
        assert identity.role == Role.USER
        assert not identity.is_admin

    def test_empty_user_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CallerIdentity(user_id="")

    def test_owns(self) -> None:
        identity = CallerIdentity(user_id="user-1")
        assert identity.owns("user-1")
        assert not identity.owns("user-2")
        assert not identity.owns(None)

    def test_identities_compare_by_value(self) -> None:
        assert CallerIdentity(user_id="u", role=Role.ADMIN) == CallerIdentity(
            user_id="u", role=Role.ADMIN
        )


class TestProductSnapshot:
    """Tests for ProductSnapshot value object."""

    def test_has_stock_for(self) -> None:
        product = ProductSnapshot(product_id="p", title="P", price_cents=100, stock=3)
        assert product.has_stock_for(3)
        assert not product.has_stock_for(4)

    def test_negative_price_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ProductSnapshot(product_id="p", title="P", price_cents=-1, stock=3)


class TestOptionsKey:
    """Tests for the canonical options key."""

    def test_key_ignores_insertion_order(self) -> None:
        assert options_key({"size": "M", "color": "red"}) == options_key(
            {"color": "red", "size": "M"}
        )

    def test_none_and_empty_are_equal(self) -> None:
        assert options_key(None) == options_key({}) == "{}"
