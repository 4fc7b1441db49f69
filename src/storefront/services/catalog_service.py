import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from storefront.exceptions import BusinessLogicError, ConflictError, NotFoundError
from storefront.models import CartItem, Category, OrderItem, Product, slugify
from storefront.models.base import utcnow

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = (
    "name",
    "description",
    "price_cents",
    "brand",
    "images",
    "stock",
    "is_active",
    "specifications",
    "tags",
    "discount_percentage",
    "discount_starts_at",
    "discount_ends_at",
)

CATEGORY_FIELDS = ("description", "image", "parent_id", "is_active", "sort_order")


class CatalogService:
    """
    Product and category queries and admin mutations.

    Listing only returns active products unless include_inactive is set;
    admins editing the catalogue see everything.
    """

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------ #
    # Categories                                                           #
    # ------------------------------------------------------------------ #
    def list_categories(self, include_inactive: bool = False) -> List[Tuple[Category, int]]:
        counts = (
            select(Product.category_id, func.count(Product.id).label("product_count"))
            .group_by(Product.category_id)
            .subquery()
        )
        stmt = (
            select(Category, func.coalesce(counts.c.product_count, 0))
            .outerjoin(counts, counts.c.category_id == Category.id)
            .order_by(Category.sort_order, Category.name)
        )
        if not include_inactive:
            stmt = stmt.where(Category.is_active.is_(True))
        return [(category, int(count)) for category, count in self.session.execute(stmt).all()]

    def get_category_by_slug(self, slug: str) -> Category:
        category = self.session.scalar(select(Category).where(Category.slug == slug))
        if category is None:
            raise NotFoundError("Category", slug)
        return category

    def get_category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category", str(category_id))
        return category

    def _ensure_unique_category(self, name: str, exclude_id: Optional[int] = None) -> None:
        slug = slugify(name)
        stmt = select(Category).where(or_(Category.name == name, Category.slug == slug))
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise ConflictError(f"Category '{name}' already exists", conflict_field="name")

    def create_category(self, data: Dict[str, Any]) -> Category:
        name = data["name"].strip()
        self._ensure_unique_category(name)
        category = Category()
        category.set_name(name)
        for field in CATEGORY_FIELDS:
            if field in data:
                setattr(category, field, data[field])
        if category.parent_id is not None:
            self.get_category(category.parent_id)
        self.session.add(category)
        self.session.flush()
        logger.info(f"Created category {category.id} ({category.slug})")
        return category

    def update_category(self, category_id: int, data: Dict[str, Any]) -> Category:
        category = self.get_category(category_id)
        if "name" in data:
            name = data["name"].strip()
            self._ensure_unique_category(name, exclude_id=category_id)
            category.set_name(name)
        if data.get("parent_id") is not None:
            self._ensure_not_descendant(category_id, data["parent_id"])
        for field in CATEGORY_FIELDS:
            if field in data:
                setattr(category, field, data[field])
        self.session.flush()
        return category

    def _ensure_not_descendant(self, category_id: int, parent_id: int) -> None:
        """Reject parent_id when it is category_id itself or one of its subcategories."""
        parent = self.get_category(parent_id)
        seen = set()
        while parent is not None and parent.id not in seen:
            if parent.id == category_id:
                raise BusinessLogicError(
                    "A category cannot be nested under itself or one of its subcategories",
                    rule="category_parent_cycle",
                )
            seen.add(parent.id)
            parent = self.session.get(Category, parent.parent_id) if parent.parent_id is not None else None

    def delete_category(self, category_id: int) -> None:
        category = self.get_category(category_id)
        in_use = self.session.scalar(
            select(func.count(Product.id)).where(Product.category_id == category_id)
        )
        if in_use:
            raise BusinessLogicError(
                f"Category has {in_use} products; move or delete them first",
                rule="category_in_use",
            )
        self.session.delete(category)
        logger.info(f"Deleted category {category_id}")

    # ------------------------------------------------------------------ #
    # Products                                                             #
    # ------------------------------------------------------------------ #
    def list_products(
        self,
        page: int = 1,
        limit: int = 20,
        category_slug: Optional[str] = None,
        search: Optional[str] = None,
        min_price_cents: Optional[int] = None,
        max_price_cents: Optional[int] = None,
        in_stock: Optional[bool] = None,
        include_inactive: bool = False,
    ) -> Tuple[List[Product], int]:
        stmt = select(Product).options(selectinload(Product.category))
        if not include_inactive:
            stmt = stmt.where(Product.is_active.is_(True))
        if category_slug:
            category = self.get_category_by_slug(category_slug)
            stmt = stmt.where(Product.category_id == category.id)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    Product.name.ilike(pattern),
                    Product.brand.ilike(pattern),
                    Product.description.ilike(pattern),
                )
            )
        if min_price_cents is not None:
            stmt = stmt.where(Product.price_cents >= min_price_cents)
        if max_price_cents is not None:
            stmt = stmt.where(Product.price_cents <= max_price_cents)
        if in_stock is True:
            stmt = stmt.where(Product.stock > 0)
        elif in_stock is False:
            stmt = stmt.where(Product.stock == 0)

        total = self.session.scalar(select(func.count()).select_from(stmt.subquery()))
        products = self.session.scalars(
            stmt.order_by(Product.created_at.desc(), Product.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return list(products), int(total or 0)

    def featured_products(self, limit: int = 8) -> List[Product]:
        stmt = (
            select(Product)
            .options(selectinload(Product.category))
            .where(Product.is_active.is_(True), Product.stock > 0)
            .order_by(Product.average_rating.desc(), Product.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def products_on_sale(self, limit: int = 20) -> List[Product]:
        stmt = (
            select(Product)
            .options(selectinload(Product.category))
            .where(Product.is_active.is_(True), Product.discount_percentage > 0)
            .order_by(Product.discount_percentage.desc(), Product.id)
        )
        now = utcnow()
        # The window check runs in Python so naive SQLite datetimes compare correctly
        return [p for p in self.session.scalars(stmt).all() if p.discount_active(now)][:limit]

    def get_product(self, product_id: int, include_inactive: bool = False) -> Product:
        product = self.session.get(Product, product_id)
        if product is None or (not product.is_active and not include_inactive):
            raise NotFoundError("Product", str(product_id))
        return product

    def create_product(self, data: Dict[str, Any]) -> Product:
        category = self.get_category(data["category_id"])
        product = Product(category=category)
        for field in PRODUCT_FIELDS:
            if field in data:
                setattr(product, field, data[field])
        self.session.add(product)
        self.session.flush()
        logger.info(f"Created product {product.id} ({product.name})")
        return product

    def update_product(self, product_id: int, data: Dict[str, Any]) -> Product:
        product = self.get_product(product_id, include_inactive=True)
        if "category_id" in data:
            product.category = self.get_category(data["category_id"])
        for field in PRODUCT_FIELDS:
            if field in data:
                setattr(product, field, data[field])
        self.session.flush()
        return product

    def delete_product(self, product_id: int) -> bool:
        """Delete the product, or deactivate it when orders reference it.

        Returns True when the row was deleted.
        """
        product = self.get_product(product_id, include_inactive=True)
        self.session.execute(delete(CartItem).where(CartItem.product_id == product_id))

        ordered = self.session.scalar(
            select(func.count(OrderItem.id)).where(OrderItem.product_id == product_id)
        )
        if ordered:
            product.is_active = False
            logger.info(f"Deactivated product {product_id}; referenced by {ordered} order lines")
            return False

        self.session.delete(product)
        logger.info(f"Deleted product {product_id}")
        return True
