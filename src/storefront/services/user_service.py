import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from storefront.exceptions import BusinessLogicError, ConflictError, NotFoundError
from storefront.models import Cart, CartItem, Order, Product, User
from storefront.services.auth_service import AuthService

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("first_name", "last_name", "phone_number", "profile_picture", "addresses")
ADMIN_FIELDS = PROFILE_FIELDS + ("is_active",)


class UserService:
    """
    Account management: the signed-in user's profile and wishlist, and the
    admin user directory.

    Admins cannot delete, deactivate or demote their own account, so a store
    always keeps the admin that is making the change.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", str(user_id))
        return user

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Tuple[List[User], int]:
        stmt = select(User)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(User.email.ilike(pattern), User.first_name.ilike(pattern), User.last_name.ilike(pattern))
            )
        if role:
            stmt = stmt.where(User.role == role)

        total = self.session.scalar(select(func.count()).select_from(stmt.subquery()))
        users = self.session.scalars(
            stmt.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit)
        ).all()
        return list(users), int(total or 0)

    def _apply(self, user: User, data: Dict[str, Any], fields) -> None:
        if "email" in data:
            email = data["email"].strip().lower()
            existing = self.session.scalar(select(User).where(User.email == email, User.id != user.id))
            if existing is not None:
                raise ConflictError("Email is already in use", conflict_field="email")
            user.email = email
        if data.get("password"):
            user.hashed_password = AuthService.hash_password(data["password"])
        for field in fields:
            if field in data:
                value = data[field]
                setattr(user, field, value.strip() if field in ("first_name", "last_name") else value)

    # ------------------------------------------------------------------ #
    # Admin directory                                                      #
    # ------------------------------------------------------------------ #
    def create_user(self, data: Dict[str, Any]) -> User:
        email = data["email"].strip().lower()
        if self.session.scalar(select(User).where(User.email == email)) is not None:
            raise ConflictError("User already exists", conflict_field="email")

        role = data.get("role") or "customer"
        user = User(
            first_name=data["first_name"].strip(),
            last_name=data["last_name"].strip(),
            email=email,
            hashed_password=AuthService.hash_password(data["password"]),
            phone_number=data.get("phone_number"),
            role=role,
            is_admin=role == "admin",
            is_active=data.get("is_active", True),
            provider="local",
        )
        self.session.add(user)
        self.session.flush()
        logger.info(f"Created {role} account {user.id} ({email})")
        return user

    def update_user(self, user_id: int, data: Dict[str, Any], acting_user_id: int) -> User:
        user = self.get_user(user_id)
        if user_id == acting_user_id:
            if data.get("role", "admin") != "admin" or data.get("is_active", True) is False:
                raise BusinessLogicError(
                    "You cannot remove your own admin access", rule="cannot_demote_self"
                )

        self._apply(user, data, ADMIN_FIELDS)
        if "role" in data:
            user.role = data["role"]
            user.is_admin = data["role"] == "admin"
        self.session.flush()
        return user

    def delete_user(self, user_id: int, acting_user_id: int) -> bool:
        """Delete the account, or deactivate it when it has placed orders.

        Returns True when the row was deleted.
        """
        if user_id == acting_user_id:
            raise BusinessLogicError("You cannot delete your own account", rule="cannot_delete_self")
        user = self.get_user(user_id)

        cart_ids = select(Cart.id).where(Cart.user_id == user_id)
        self.session.execute(delete(CartItem).where(CartItem.cart_id.in_(cart_ids)))
        self.session.execute(delete(Cart).where(Cart.user_id == user_id))

        orders = self.session.scalar(select(func.count(Order.id)).where(Order.user_id == user_id))
        if orders:
            user.is_active = False
            logger.info(f"Deactivated user {user_id}; referenced by {orders} orders")
            return False

        self.session.delete(user)
        logger.info(f"Deleted user {user_id}")
        return True

    # ------------------------------------------------------------------ #
    # Profile                                                              #
    # ------------------------------------------------------------------ #
    def update_profile(self, user_id: int, data: Dict[str, Any]) -> User:
        user = self.get_user(user_id)
        self._apply(user, data, PROFILE_FIELDS)
        self.session.flush()
        return user

    # ------------------------------------------------------------------ #
    # Wishlist                                                             #
    # ------------------------------------------------------------------ #
    def wishlist(self, user_id: int) -> List[Product]:
        ids = list(self.get_user(user_id).wishlist or [])
        if not ids:
            return []
        products = {
            p.id: p
            for p in self.session.scalars(
                select(Product).where(Product.id.in_(ids), Product.is_active.is_(True))
            ).all()
        }
        return [products[pid] for pid in ids if pid in products]

    def add_to_wishlist(self, user_id: int, product_id: int) -> List[Product]:
        user = self.get_user(user_id)
        product = self.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFoundError("Product", str(product_id))
        if product_id not in (user.wishlist or []):
            # Reassign: plain JSON columns don't track in-place mutation
            user.wishlist = list(user.wishlist or []) + [product_id]
            self.session.flush()
        return self.wishlist(user_id)

    def remove_from_wishlist(self, user_id: int, product_id: int) -> List[Product]:
        user = self.get_user(user_id)
        if product_id not in (user.wishlist or []):
            raise NotFoundError("Wishlist item", str(product_id))
        user.wishlist = [pid for pid in user.wishlist if pid != product_id]
        self.session.flush()
        return self.wishlist(user_id)
