from storefront.services.admin_service import AdminService
from storefront.services.auth_service import AuthService, TokenService
from storefront.services.cart_service import CartService
from storefront.services.catalog_service import CatalogService
from storefront.services.order_service import OrderService, calculate_totals
from storefront.services.user_service import UserService

__all__ = [
    "AdminService",
    "AuthService",
    "TokenService",
    "CartService",
    "CatalogService",
    "OrderService",
    "UserService",
    "calculate_totals",
]
