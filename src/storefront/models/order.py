from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship

from storefront.models.base import Base, IdType, JSONType, utcnow

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_METHODS = ("cash_on_delivery", "credit_card", "debit_card")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")
DELIVERY_TYPES = ("pickup", "delivery")

ALLOWED_TRANSITIONS = {
    "pending": ("processing", "cancelled"),
    "processing": ("shipped", "cancelled"),
    "shipped": ("delivered",),
    "delivered": (),
    "cancelled": (),
}

STORE_PICKUP_ADDRESS = {
    "street": "Store Pickup",
    "city": "Tunis",
    "state": "Tunis",
    "postal_code": "1000",
    "country": "Tunisia",
}


class InvalidTransition(ValueError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change order status from '{current}' to '{target}'")


class Order(Base):
    """
    A purchase placed from a user's cart.

    Amounts are integer cents and are snapshotted when the order is placed so
    later price changes do not alter historical totals.

    status only moves along ALLOWED_TRANSITIONS; transition_to() enforces it
    and appends an entry to status_history.
    """

    __tablename__ = "orders"

    id = Column(IdType, primary_key=True, autoincrement=True)
    user_id = Column(IdType, ForeignKey("users.id"), nullable=False)
    status = Column(Text, nullable=False, default="pending")
    payment_method = Column(Text, nullable=False, default="cash_on_delivery")
    payment_status = Column(Text, nullable=False, default="pending")
    transaction_id = Column(Text, nullable=True)
    delivery_type = Column(Text, nullable=False, default="pickup")
    shipping_address = Column(JSONType, nullable=False, default=dict)
    subtotal_cents = Column(Integer, nullable=False)
    shipping_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False)
    total_cents = Column(Integer, nullable=False)
    notes = Column(Text, nullable=False, default="")
    tracking_number = Column(Text, nullable=True, index=True)
    estimated_delivery_at = Column(DateTime(timezone=True), nullable=True)
    status_history = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','shipped','delivered','cancelled')",
            name="ck_order_status",
        ),
        CheckConstraint(
            "payment_method IN ('cash_on_delivery','credit_card','debit_card')",
            name="ck_order_payment_method",
        ),
        CheckConstraint(
            "payment_status IN ('pending','completed','failed','refunded')",
            name="ck_order_payment_status",
        ),
        CheckConstraint("delivery_type IN ('pickup','delivery')", name="ck_order_delivery_type"),
        CheckConstraint("total_cents >= 0", name="ck_order_total"),
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status", "status"),
    )

    user = relationship("User")
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

    def can_transition_to(self, status: str) -> bool:
        return status in ALLOWED_TRANSITIONS.get(self.status, ())

    def record_status(self, note: str = "", at: Optional[datetime] = None) -> None:
        # Reassign: plain JSON columns don't track in-place mutation
        entry = {"status": self.status, "date": (at or utcnow()).isoformat(), "note": note}
        self.status_history = list(self.status_history or []) + [entry]

    def transition_to(self, status: str, note: str = "", at: Optional[datetime] = None) -> None:
        if status not in ORDER_STATUSES or not self.can_transition_to(status):
            raise InvalidTransition(self.status, status)
        self.status = status
        self.record_status(note, at)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "payment": {
                "method": self.payment_method,
                "status": self.payment_status,
                "transaction_id": self.transaction_id,
            },
            "delivery_type": self.delivery_type,
            "shipping_address": self.shipping_address or {},
            "subtotal_cents": self.subtotal_cents,
            "shipping_cents": self.shipping_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "tracking_number": self.tracking_number,
            "status_history": self.status_history or [],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        else:
            data["item_count"] = len(self.items)
        return data

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status!r} total_cents={self.total_cents}>"


class OrderItem(Base):
    """
    A single line item within an order.

    unit_price_cents is the list price at purchase time; discount_cents is the
    total discount granted on the whole line.
    """

    __tablename__ = "order_items"

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(IdType, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(IdType, ForeignKey("products.id"), nullable=False)
    product_name = Column(Text, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    discount_cents = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("unit_price_cents >= 0", name="ck_item_unit_price"),
        CheckConstraint("quantity > 0", name="ck_item_quantity"),
        CheckConstraint("discount_cents >= 0", name="ck_item_discount"),
    )

    order = relationship("Order", back_populates="items")

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity - self.discount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "discount_cents": self.discount_cents,
            "subtotal_cents": self.subtotal_cents,
        }

    def __repr__(self) -> str:
        return f"<OrderItem id={self.id} product_id={self.product_id} qty={self.quantity}>"
