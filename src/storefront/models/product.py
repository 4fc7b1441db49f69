import re
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
)
from sqlalchemy.orm import relationship

from storefront.models.base import Base, IdType, JSONType, as_utc, utcnow

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """'Soins du Visage & Corps' -> 'soins-du-visage-corps'"""
    return _SLUG_INVALID.sub("-", name.lower()).strip("-")


class Category(Base):
    """
    Top-level or nested grouping for products.

    slug is derived from name whenever the name is set through set_name();
    parent_id allows one level of sub-categories (or more, nothing enforces
    a depth).
    """

    __tablename__ = "categories"

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")
    slug = Column(Text, nullable=False, unique=True, index=True)
    image = Column(Text, nullable=True)
    parent_id = Column(IdType, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    products = relationship("Product", back_populates="category")
    parent = relationship("Category", remote_side=[id], backref="subcategories")

    def set_name(self, name: str) -> None:
        self.name = name.strip()
        self.slug = slugify(self.name)

    def to_dict(self, product_count: Optional[int] = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "slug": self.slug,
            "image": self.image,
            "parent_id": self.parent_id,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
        }
        if product_count is not None:
            data["product_count"] = product_count
        return data

    def __repr__(self) -> str:
        return f"<Category id={self.id} slug={self.slug!r}>"


class Product(Base):
    """
    A catalogue item.

    price_cents stores the price as an integer number of cents to avoid
    floating-point rounding errors. $19.99 -> 1999.

    The discount is a percentage that only applies inside its optional
    [discount_starts_at, discount_ends_at] window.
    """

    __tablename__ = "products"

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    price_cents = Column(Integer, nullable=False)
    category_id = Column(IdType, ForeignKey("categories.id"), nullable=False, index=True)
    brand = Column(Text, nullable=False, default="")
    images = Column(JSONType, nullable=False, default=list)
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    specifications = Column(JSONType, nullable=False, default=dict)
    tags = Column(JSONType, nullable=False, default=list)
    average_rating = Column(Float, nullable=False, default=0.0)
    discount_percentage = Column(Float, nullable=True)
    discount_starts_at = Column(DateTime(timezone=True), nullable=True)
    discount_ends_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_product_price"),
        CheckConstraint("stock >= 0", name="ck_product_stock"),
        CheckConstraint(
            "discount_percentage IS NULL OR (discount_percentage >= 0 AND discount_percentage <= 100)",
            name="ck_product_discount",
        ),
        Index("ix_products_average_rating", "average_rating"),
    )

    category = relationship("Category", back_populates="products")

    @property
    def in_stock(self) -> bool:
        return self.stock > 0

    def discount_active(self, now: Optional[datetime] = None) -> bool:
        if not self.discount_percentage:
            return False
        now = now or utcnow()
        starts, ends = as_utc(self.discount_starts_at), as_utc(self.discount_ends_at)
        if starts and starts > now:
            return False
        if ends and ends < now:
            return False
        return True

    def discounted_price_cents(self, now: Optional[datetime] = None) -> int:
        if not self.discount_active(now):
            return self.price_cents
        return round(self.price_cents * (100 - self.discount_percentage) / 100)

    @property
    def main_image(self) -> Optional[str]:
        images = self.images or []
        for image in images:
            if image.get("is_main"):
                return image.get("url")
        return images[0].get("url") if images else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "discounted_price_cents": self.discounted_price_cents(),
            "category_id": self.category_id,
            "category": self.category.slug if self.category else None,
            "brand": self.brand,
            "images": self.images or [],
            "main_image": self.main_image,
            "stock": self.stock,
            "in_stock": self.in_stock,
            "is_active": self.is_active,
            "specifications": self.specifications or {},
            "tags": self.tags or [],
            "average_rating": self.average_rating,
            "discount": {
                "percentage": self.discount_percentage,
                "starts_at": self.discount_starts_at.isoformat() if self.discount_starts_at else None,
                "ends_at": self.discount_ends_at.isoformat() if self.discount_ends_at else None,
                "active": self.discount_active(),
            },
        }

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"
