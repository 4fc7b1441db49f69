"""
Seed script -- populates the database with development data.

Run with:
    python -m storefront.seed

Idempotent: categories are matched by name, products by (name, category)
and the admin by email, so running it twice changes nothing. The admin is
only created when ADMIN_EMAIL and ADMIN_PASSWORD are set.
"""

import logging
import os
import sys
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.config import load_config
from storefront.db import DatabaseConnector
from storefront.exceptions import DatabaseStartupError
from storefront.logging_setup import configure_logging
from storefront.models import Category, Product, User
from storefront.services import AuthService

logger = logging.getLogger(__name__)

CATEGORIES = [
    {"name": "Skin Care", "description": "Cleansers, serums and moisturisers.", "sort_order": 1},
    {"name": "Hair Care", "description": "Shampoos, conditioners and treatments.", "sort_order": 2},
    {"name": "Body Care", "description": "Lotions, scrubs and shower gels.", "sort_order": 3},
    {"name": "Sun Care", "description": "Sunscreens and after-sun care.", "sort_order": 4},
]

PRODUCTS = [
    {
        "name": "Hydrating Face Serum",
        "category": "Skin Care",
        "brand": "Aurora",
        "description": "Lightweight hyaluronic acid serum for daily hydration.",
        "price_cents": 4590,
        "stock": 40,
        "images": [{"url": "/images/hydrating-serum.jpg", "is_main": True}],
        "specifications": {"weight": "30 ml", "usage": "Apply morning and evening on clean skin."},
        "tags": ["serum", "hydration"],
    },
    {
        "name": "Gentle Foaming Cleanser",
        "category": "Skin Care",
        "brand": "Aurora",
        "description": "Soap-free cleanser suitable for sensitive skin.",
        "price_cents": 2890,
        "stock": 65,
        "images": [{"url": "/images/foaming-cleanser.jpg", "is_main": True}],
        "specifications": {"weight": "150 ml"},
        "tags": ["cleanser", "sensitive"],
        "discount_percentage": 15.0,
    },
    {
        "name": "Argan Repair Shampoo",
        "category": "Hair Care",
        "brand": "Atlas",
        "description": "Nourishing shampoo with cold-pressed argan oil.",
        "price_cents": 2450,
        "stock": 80,
        "images": [{"url": "/images/argan-shampoo.jpg", "is_main": True}],
        "specifications": {"weight": "250 ml", "ingredients": ["argan oil", "keratin"]},
        "tags": ["shampoo", "argan"],
    },
    {
        "name": "Shea Body Lotion",
        "category": "Body Care",
        "brand": "Atlas",
        "description": "Rich body lotion with shea butter for dry skin.",
        "price_cents": 3190,
        "stock": 0,
        "images": [{"url": "/images/shea-lotion.jpg", "is_main": True}],
        "specifications": {"weight": "400 ml"},
        "tags": ["lotion", "dry skin"],
    },
    {
        "name": "Mineral Sunscreen SPF 50",
        "category": "Sun Care",
        "brand": "Helios",
        "description": "Broad-spectrum mineral sunscreen, water resistant.",
        "price_cents": 5290,
        "stock": 25,
        "images": [{"url": "/images/sunscreen-spf50.jpg", "is_main": True}],
        "specifications": {"weight": "50 ml", "warnings": ["Avoid contact with eyes."]},
        "tags": ["sunscreen", "spf50"],
    },
]


def seed_categories(session: Session) -> dict:
    by_name = {c.name: c for c in session.scalars(select(Category))}
    for data in CATEGORIES:
        if data["name"] in by_name:
            continue
        category = Category(description=data["description"], sort_order=data["sort_order"])
        category.set_name(data["name"])
        session.add(category)
        by_name[data["name"]] = category
    session.flush()
    return by_name


def seed_products(session: Session, categories: dict) -> int:
    created = 0
    for data in PRODUCTS:
        category = categories[data["category"]]
        exists = session.scalar(
            select(Product.id).where(Product.name == data["name"], Product.category_id == category.id)
        )
        if exists:
            continue
        fields = {k: v for k, v in data.items() if k != "category"}
        session.add(Product(category=category, **fields))
        created += 1
    session.flush()
    return created


def seed_admin(session: Session, email: Optional[str], password: Optional[str]) -> Optional[User]:
    if not email or not password:
        return None
    email = email.strip().lower()
    user = session.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(
            first_name="Store",
            last_name="Admin",
            email=email,
            hashed_password=AuthService.hash_password(password),
            role="admin",
            is_admin=True,
            provider="local",
        )
        session.add(user)
        session.flush()
    return user


def seed(session: Session, admin_email: Optional[str] = None, admin_password: Optional[str] = None) -> None:
    categories = seed_categories(session)
    print("  [+] Categories seeded")

    created = seed_products(session, categories)
    print(f"  [+] Products seeded ({created} new)")

    if seed_admin(session, admin_email, admin_password):
        print("  [+] Admin user seeded")
    else:
        print("  [-] ADMIN_EMAIL / ADMIN_PASSWORD not set, admin skipped")


def main() -> None:
    config = load_config()
    configure_logging(config.app.log_level)
    if not config.database.url:
        logger.critical("DATABASE_URL is not set")
        sys.exit(1)

    connector = DatabaseConnector(config.database)
    try:
        connector.connect()
    except DatabaseStartupError:
        sys.exit(1)

    print("Seeding database...")
    try:
        with connector.session() as session:
            seed(session, os.environ.get("ADMIN_EMAIL"), os.environ.get("ADMIN_PASSWORD"))
    finally:
        connector.close()
    print("Done.")


if __name__ == "__main__":
    main()
