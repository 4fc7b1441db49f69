# Re-export all models from a single entry point so the rest of the app
# can import cleanly:
#   from storefront.models import User, Product, Order
#
# Importing all models here also ensures they are registered with Base.metadata
# before DatabaseConnector.ensure_indexes() calls create_all().

from storefront.models.base import Base
from storefront.models.cart import Cart, CartItem
from storefront.models.order import (
    ALLOWED_TRANSITIONS,
    ORDER_STATUSES,
    InvalidTransition,
    Order,
    OrderItem,
)
from storefront.models.product import Category, Product, slugify
from storefront.models.user import User

__all__ = [
    "Base",
    "User",
    "Category",
    "Product",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "ORDER_STATUSES",
    "ALLOWED_TRANSITIONS",
    "InvalidTransition",
    "slugify",
]
