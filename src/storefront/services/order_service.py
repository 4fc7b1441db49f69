import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from storefront.exceptions import BusinessLogicError, NotFoundError, ValidationError
from storefront.models import InvalidTransition, Order, OrderItem, Product
from storefront.models.order import STORE_PICKUP_ADDRESS
from storefront.services.cart_service import CartService

logger = logging.getLogger(__name__)


def calculate_totals(
    lines: Iterable[Tuple[int, int, int]],
    tax_rate: float,
    shipping_cents: int = 0,
) -> Dict[str, int]:
    """
    Totals for (unit_price_cents, quantity, line_discount_cents) lines.

    tax is charged on the discounted subtotal and rounded half-up to the cent.
    """
    subtotal = sum(price * qty - discount for price, qty, discount in lines)
    tax = int((Decimal(subtotal) * Decimal(str(tax_rate))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return {
        "subtotal_cents": subtotal,
        "shipping_cents": shipping_cents,
        "tax_cents": tax,
        "total_cents": subtotal + shipping_cents + tax,
    }


class OrderService:
    """
    Order placement and lifecycle.

    Placing an order validates stock for every cart line, snapshots prices,
    decrements stock and empties the cart in the caller's transaction.
    """

    def __init__(self, session: Session, tax_rate: float = 0.18):
        self.session = session
        self.tax_rate = tax_rate
        self.carts = CartService(session)

    def place_order(self, user_id: int, data: Dict[str, Any]) -> Order:
        delivery_type = data.get("delivery_type", "pickup")
        shipping_address = data.get("shipping_address")
        if delivery_type == "delivery" and not shipping_address:
            raise ValidationError(
                "Shipping address is required for delivery",
                field_errors={"shipping_address": ["Missing data for required field."]},
            )

        cart = self.carts.get_or_create_cart(user_id)
        if not cart.items:
            raise BusinessLogicError("Cart is empty", rule="empty_cart")

        # Lock the product rows so concurrent checkouts cannot oversell
        product_ids = sorted(item.product_id for item in cart.items)
        products = {
            p.id: p
            for p in self.session.scalars(
                select(Product).where(Product.id.in_(product_ids)).with_for_update()
            ).all()
        }

        order_items: List[OrderItem] = []
        for item in cart.items:
            product = products.get(item.product_id)
            if product is None or not product.is_active:
                raise BusinessLogicError(
                    "One or more products are no longer available", rule="product_unavailable"
                )
            if product.stock < item.quantity:
                raise BusinessLogicError(
                    f"Insufficient stock for {product.name}. "
                    f"Available: {product.stock}, Requested: {item.quantity}",
                    rule="insufficient_stock",
                )
            unit_discount = product.price_cents - product.discounted_price_cents()
            order_items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    unit_price_cents=product.price_cents,
                    quantity=item.quantity,
                    discount_cents=unit_discount * item.quantity,
                )
            )

        totals = calculate_totals(
            ((i.unit_price_cents, i.quantity, i.discount_cents) for i in order_items),
            self.tax_rate,
        )

        order = Order(
            user_id=user_id,
            status="pending",
            payment_method=data.get("payment_method", "cash_on_delivery"),
            payment_status="pending",
            delivery_type=delivery_type,
            shipping_address=STORE_PICKUP_ADDRESS if delivery_type == "pickup" else shipping_address,
            notes=data.get("notes") or "",
            items=order_items,
            **totals,
        )
        order.record_status("Order placed for store pickup" if delivery_type == "pickup" else "Order placed")
        self.session.add(order)

        for item in cart.items:
            products[item.product_id].stock -= item.quantity
        self.carts.clear(user_id)

        self.session.flush()
        logger.info(f"Order {order.id} placed by user {user_id}: {len(order_items)} lines, total {order.total_cents}")
        return order

    def list_orders(
        self, user_id: Optional[int], page: int = 1, limit: int = 10, status: Optional[str] = None
    ) -> Tuple[List[Order], int]:
        """Orders newest first; user_id None lists every customer's orders."""
        stmt = select(Order)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        if status:
            stmt = stmt.where(Order.status == status)
        total = self.session.scalar(select(func.count()).select_from(stmt.subquery()))
        orders = self.session.scalars(
            stmt.options(selectinload(Order.items), selectinload(Order.user))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return list(orders), int(total or 0)

    def get_order(self, order_id: int, user_id: Optional[int] = None) -> Order:
        """Fetch an order; when user_id is given the order must belong to it."""
        order = self.session.get(Order, order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise NotFoundError("Order", str(order_id))
        return order

    def cancel_order(self, order_id: int, user_id: int, reason: str = "") -> Order:
        order = self.get_order(order_id, user_id)
        if order.status != "pending":
            raise BusinessLogicError(
                "Order cannot be cancelled. It is already being processed.", rule="order_not_pending"
            )
        self._transition(order, "cancelled", reason or "Cancelled by customer")
        return order

    def update_status(self, order_id: int, status: str, note: str = "") -> Order:
        order = self.get_order(order_id)
        self._transition(order, status, note)
        return order

    def _transition(self, order: Order, status: str, note: str) -> None:
        try:
            order.transition_to(status, note)
        except InvalidTransition as exc:
            raise BusinessLogicError(str(exc), rule="invalid_status_transition")

        if status == "cancelled":
            # Stock goes back on the shelf
            for item in order.items:
                product = self.session.get(Product, item.product_id)
                if product is not None:
                    product.stock += item.quantity
        if status == "delivered" and order.payment_method == "cash_on_delivery":
            order.payment_status = "completed"
        self.session.flush()
        logger.info(f"Order {order.id} moved to {status}")

    def stats(self, user_id: int) -> Dict[str, Any]:
        rows = self.session.execute(
            select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_cents), 0))
            .where(Order.user_id == user_id)
            .group_by(Order.status)
        ).all()
        by_status = {status: {"count": int(count), "total_cents": int(total)} for status, count, total in rows}
        spent = sum(v["total_cents"] for k, v in by_status.items() if k != "cancelled")
        return {
            "total_orders": sum(v["count"] for v in by_status.values()),
            "total_spent_cents": spent,
            "orders_by_status": by_status,
        }
