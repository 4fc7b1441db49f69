from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.models.base import Base, IdType, utcnow


class Cart(Base):
    """
    A shopping cart belonging to a user.

    A user has one cart at a time. updated_at is refreshed whenever items are
    added or removed, which is useful for expiring abandoned carts.
    """

    __tablename__ = "carts"

    id = Column(IdType, primary_key=True, autoincrement=True)
    user_id = Column(IdType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, index=True)

    items = relationship(
        "CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.id"
    )

    def find_item(self, product_id: int):
        return next((item for item in self.items if item.product_id == product_id), None)

    def __repr__(self) -> str:
        return f"<Cart id={self.id} user_id={self.user_id}>"


class CartItem(Base):
    """
    A single product + quantity pair inside a cart.

    quantity must be > 0 -- removing an item means deleting the row, not
    setting quantity to 0.
    """

    __tablename__ = "cart_items"

    id = Column(IdType, primary_key=True, autoincrement=True)
    cart_id = Column(IdType, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(IdType, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    added_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_cart_item_quantity"),
        UniqueConstraint("cart_id", "product_id", name="uq_cart_item_product"),
    )

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")

    def __repr__(self) -> str:
        return f"<CartItem id={self.id} product_id={self.product_id} qty={self.quantity}>"
