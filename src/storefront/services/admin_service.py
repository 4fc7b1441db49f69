import logging
from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from storefront.models import Order, OrderItem, Product, User

logger = logging.getLogger(__name__)


class AdminService:
    """Read-only aggregates for the admin dashboard."""

    def __init__(self, session: Session):
        self.session = session

    def _count(self, model, *criteria) -> int:
        stmt = select(func.count()).select_from(model)
        if criteria:
            stmt = stmt.where(*criteria)
        return int(self.session.scalar(stmt) or 0)

    def dashboard_stats(self, recent: int = 5, top: int = 5) -> Dict[str, Any]:
        """
        Store-wide counts, order status breakdown and revenue.

        Revenue and top products only count orders whose payment completed, so
        pending cash-on-delivery orders show up once they are delivered.
        """
        paid = Order.payment_status == "completed"

        by_status = {
            status: int(count)
            for status, count in self.session.execute(
                select(Order.status, func.count(Order.id)).group_by(Order.status)
            ).all()
        }
        revenue = self.session.scalar(select(func.coalesce(func.sum(Order.total_cents), 0)).where(paid))

        line_revenue = func.sum(OrderItem.unit_price_cents * OrderItem.quantity - OrderItem.discount_cents)
        top_rows = self.session.execute(
            select(
                OrderItem.product_id,
                OrderItem.product_name,
                func.sum(OrderItem.quantity),
                line_revenue,
            )
            .join(Order, Order.id == OrderItem.order_id)
            .where(paid)
            .group_by(OrderItem.product_id, OrderItem.product_name)
            .order_by(line_revenue.desc(), OrderItem.product_id)
            .limit(top)
        ).all()

        recent_orders = self.session.scalars(
            select(Order)
            .options(selectinload(Order.user))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(recent)
        ).all()

        return {
            "total_users": self._count(User),
            "customers": self._count(User, User.role == "customer"),
            "admins": self._count(User, User.is_admin.is_(True)),
            "total_products": self._count(Product),
            "total_orders": sum(by_status.values()),
            "orders_by_status": by_status,
            "revenue_cents": int(revenue or 0),
            "top_products": [
                {"product_id": pid, "name": name, "total_sold": int(sold), "revenue_cents": int(cents)}
                for pid, name, sold, cents in top_rows
            ],
            "recent_orders": [
                {
                    "id": order.id,
                    "user": {
                        "id": order.user_id,
                        "first_name": order.user.first_name if order.user else None,
                        "last_name": order.user.last_name if order.user else None,
                    },
                    "total_cents": order.total_cents,
                    "status": order.status,
                    "created_at": order.created_at.isoformat() if order.created_at else None,
                }
                for order in recent_orders
            ],
        }
