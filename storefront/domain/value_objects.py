"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from storefront.domain.base import ValueObject
from storefront.domain.exceptions import ValidationError


# ============================================================================
# Caller Identity
# ============================================================================


class Role(str, Enum):
    """Roles carried by an authenticated caller."""

    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class CallerIdentity(ValueObject):
    """Already-verified identity of the caller of an operation.

    Token issuance and verification happen outside the domain; services
    only ever see this fact.

    Attributes:
        user_id: Stable user identifier.
        role: Role granted to the caller.
    """

    user_id: str
    role: Role = Role.USER

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValidationError("Caller identity requires a user id")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def owns(self, owner_id: str | None) -> bool:
        """Check whether this caller is the given owner.

        Args:
            owner_id: Owner recorded on a resource (may be None).

        Returns:
            True if the ids match.
        """
        return owner_id is not None and owner_id == self.user_id


# ============================================================================
# Product Snapshot
# ============================================================================


@dataclass(frozen=True)
class ProductSnapshot(ValueObject):
    """Current state of a product as read from the inventory ledger.

    Attributes:
        product_id: Product identifier.
        title: Display title.
        price_cents: Unit price in minor currency units.
        stock: Units currently available.
        thumbnail: Optional image URL.
    """

    product_id: str
    title: str
    price_cents: int
    stock: int
    thumbnail: str | None = None

    def __post_init__(self) -> None:
        if self.price_cents < 0:
            raise ValidationError(
                f"Product price cannot be negative: {self.price_cents}",
                details={"product_id": self.product_id},
            )

    def has_stock_for(self, quantity: int) -> bool:
        return self.stock >= quantity


# ============================================================================
# Selected Options
# ============================================================================


def options_key(options: dict[str, Any] | None) -> str:
    """Build a canonical key for a selected-options map.

    Two maps with the same keys and values produce the same key regardless
    of insertion order. An absent map equals an empty one.

    Args:
        options: Selected options such as ``{"size": "M"}``.

    Returns:
        Canonical JSON string.
    """
    return json.dumps(options or {}, sort_keys=True, separators=(",", ":"), default=str)
