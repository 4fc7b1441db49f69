import logging
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.exceptions import BusinessLogicError, NotFoundError, ValidationError
from storefront.models import Cart, CartItem, Product
from storefront.models.base import utcnow

logger = logging.getLogger(__name__)


class CartService:
    """
    Shopping cart business logic service

    Business rules:
    - One cart per user, created on first access
    - At most max_items_per_cart distinct products
    - 1..max_quantity_per_item units per line, never above product stock
    """

    def __init__(self, session: Session):
        self.session = session
        self.max_items_per_cart = 50
        self.max_quantity_per_item = 99

    def get_or_create_cart(self, user_id: int) -> Cart:
        cart = self.session.scalar(
            select(Cart)
            .options(selectinload(Cart.items).selectinload(CartItem.product))
            .where(Cart.user_id == user_id)
        )
        if cart is None:
            cart = Cart(user_id=user_id)
            self.session.add(cart)
            self.session.flush()
            logger.info(f"Created cart {cart.id} for user {user_id}")
        return cart

    def _get_available_product(self, product_id: int) -> Product:
        product = self.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFoundError("Product", str(product_id))
        return product

    def add_item(self, user_id: int, product_id: int, quantity: int) -> Cart:
        logger.info(f"Adding item to cart - user: {user_id}, product: {product_id}, quantity: {quantity}")
        product = self._get_available_product(product_id)
        cart = self.get_or_create_cart(user_id)

        existing = cart.find_item(product_id)
        if existing is None and len(cart.items) >= self.max_items_per_cart:
            raise BusinessLogicError(
                f"Cannot add more than {self.max_items_per_cart} different items to cart",
                rule="max_cart_items_exceeded",
            )

        new_total = quantity + (existing.quantity if existing else 0)
        if new_total > self.max_quantity_per_item:
            raise BusinessLogicError(
                f"Cannot add more than {self.max_quantity_per_item} of the same item",
                rule="max_item_quantity_exceeded",
            )
        if new_total > product.stock:
            raise BusinessLogicError(
                f"Insufficient stock for {product.name}. Available: {product.stock}, requested: {new_total}",
                rule="insufficient_stock",
            )

        if existing:
            existing.quantity = new_total
        else:
            cart.items.append(CartItem(product=product, quantity=quantity))
        cart.updated_at = utcnow()
        self.session.flush()
        return cart

    def update_item(self, user_id: int, product_id: int, quantity: int) -> Cart:
        """Set the quantity of a line; 0 removes it."""
        cart = self.get_or_create_cart(user_id)
        item = cart.find_item(product_id)
        if item is None:
            raise NotFoundError("Cart item", str(product_id))

        if quantity == 0:
            return self.remove_item(user_id, product_id)

        if quantity > self.max_quantity_per_item:
            raise ValidationError(f"Quantity cannot exceed {self.max_quantity_per_item}")
        if quantity > item.product.stock:
            raise BusinessLogicError(
                f"Insufficient stock for {item.product.name}. Available: {item.product.stock}, requested: {quantity}",
                rule="insufficient_stock",
            )
        item.quantity = quantity
        cart.updated_at = utcnow()
        self.session.flush()
        return cart

    def remove_item(self, user_id: int, product_id: int) -> Cart:
        cart = self.get_or_create_cart(user_id)
        item = cart.find_item(product_id)
        if item is None:
            raise NotFoundError("Cart item", str(product_id))
        cart.items.remove(item)
        cart.updated_at = utcnow()
        self.session.flush()
        return cart

    def clear(self, user_id: int) -> Cart:
        cart = self.get_or_create_cart(user_id)
        cart.items.clear()
        cart.updated_at = utcnow()
        self.session.flush()
        return cart

    @staticmethod
    def summarize(cart: Cart) -> Dict[str, Any]:
        """Cart payload with discounted line prices and totals."""
        items = []
        total_cents = 0
        for item in cart.items:
            product = item.product
            if product is None:
                continue
            unit_price = product.discounted_price_cents()
            line_total = unit_price * item.quantity
            total_cents += line_total
            items.append(
                {
                    "product_id": product.id,
                    "name": product.name,
                    "image": product.main_image,
                    "price_cents": product.price_cents,
                    "unit_price_cents": unit_price,
                    "quantity": item.quantity,
                    "stock": product.stock,
                    "line_total_cents": line_total,
                    "added_at": item.added_at.isoformat() if item.added_at else None,
                }
            )
        return {
            "cart_id": cart.id,
            "user_id": cart.user_id,
            "items": items,
            "total_items": len(items),
            "total_quantity": sum(i["quantity"] for i in items),
            "total_cents": total_cents,
            "is_empty": not items,
        }
