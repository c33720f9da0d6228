#!/usr/bin/env python3
"""Seed product catalog script.

Creates the storefront tables and fills the products table with a small,
deterministic demo catalog so carts and checkouts can be tried locally.

Usage:
    python scripts/seed_catalog.py
    python scripts/seed_catalog.py --count 50 --stock 5
    python scripts/seed_catalog.py --no-clear --seed 7
"""

import argparse
import asyncio
import random
import sys
from pathlib import Path

from sqlalchemy import delete

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront.infrastructure.database import Base, dispose_engine, get_engine, get_session_factory
from storefront.infrastructure.models import ProductModel

CATEGORIES = {
    "Apparel": ["T-Shirt", "Hoodie", "Cap", "Socks", "Jacket"],
    "Home": ["Mug", "Candle", "Throw Pillow", "Poster", "Coaster Set"],
    "Accessories": ["Tote Bag", "Phone Case", "Keychain", "Water Bottle", "Sticker Pack"],
}
ADJECTIVES = ["Classic", "Vintage", "Minimal", "Bold", "Organic", "Everyday", "Limited"]


async def create_tables() -> None:
    """Create database tables if they don't exist."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def build_products(count: int, stock: int, seed: int) -> list[ProductModel]:
    """Generate a deterministic list of demo products.

    Args:
        count: Number of products.
        stock: Maximum stock per product.
        seed: Random seed; the same seed yields the same catalog.

    Returns:
        Unsaved product rows.
    """
    rng = random.Random(seed)
    products = []
    for index in range(count):
        category = rng.choice(list(CATEGORIES))
        noun = rng.choice(CATEGORIES[category])
        title = f"{rng.choice(ADJECTIVES)} {noun}"
        products.append(
            ProductModel(
                id=f"prod-{seed:03d}-{index:04d}",
                title=title,
                description=f"{title} from the {category.lower()} collection.",
                category=category,
                price_cents=rng.randrange(500, 10_000, 50),
                stock=rng.randint(0, stock),
                thumbnail=f"https://picsum.photos/seed/{seed}-{index}/400/400",
            )
        )
    return products


async def seed_products(count: int, stock: int, seed: int, clear: bool = True) -> dict:
    """Seed the product catalog.

    Args:
        count: Number of products.
        stock: Maximum stock per product.
        seed: Random seed.
        clear: Whether to delete existing products first.

    Returns:
        Seeding result.
    """
    deleted = 0
    products = build_products(count, stock, seed)

    async with get_session_factory().begin() as session:
        if clear:
            result = await session.execute(delete(ProductModel))
            deleted = result.rowcount
        session.add_all(products)

    return {
        "deleted": deleted,
        "products_created": len(products),
        "out_of_stock": sum(1 for product in products if product.stock == 0),
    }


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Seed the storefront product catalog",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=30,
        help="Number of products to create (default: 30)",
    )
    parser.add_argument(
        "--stock",
        type=int,
        default=20,
        help="Maximum stock per product (default: 20)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for a reproducible catalog (default: 42)",
    )
    parser.add_argument(
        "--no-clear",
        action="store_true",
        help="Don't clear existing products before seeding",
    )

    args = parser.parse_args()

    print("=" * 60)
    print("Storefront Catalog Seeder")
    print("=" * 60)
    print(f"Products: {args.count}")
    print(f"Clear existing: {not args.no_clear}")
    print()

    print("Creating database tables...")
    await create_tables()
    print("Tables ready.")
    print()

    try:
        result = await seed_products(
            count=args.count,
            stock=args.stock,
            seed=args.seed,
            clear=not args.no_clear,
        )
        print(f"  ✓ Deleted: {result['deleted']} existing products")
        print(f"  ✓ Created: {result['products_created']} products")
        print(f"  ✓ Out of stock: {result['out_of_stock']}")
    finally:
        await dispose_engine()

    print("=" * 60)
    print("Seeding complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
