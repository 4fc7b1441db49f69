import logging

from flask import Blueprint, current_app, g, request

from storefront.exceptions import ValidationError
from storefront.models import ORDER_STATUSES
from storefront.routes.schemas import CancelOrderSchema, CreateOrderSchema, OrderStatusSchema
from storefront.routes.utils import (
    admin_required,
    get_metrics,
    load_body,
    login_required,
    paginated,
    parse_int,
    session_scope,
    success_response,
)
from storefront.services import OrderService

logger = logging.getLogger(__name__)

orders_bp = Blueprint("orders", __name__)

_create_schema = CreateOrderSchema()
_cancel_schema = CancelOrderSchema()
_status_schema = OrderStatusSchema()


def _service(session) -> OrderService:
    return OrderService(session, tax_rate=current_app.config["TAX_RATE"])


@orders_bp.route("", methods=["POST"])
@login_required
def create_order():
    """
    Place an order from the current cart:
      1. Validate the cart is not empty and every line is in stock
      2. Snapshot prices and discounts into order lines
      3. Decrement stock and clear the cart
    All steps run inside a single transaction; any failure rolls everything back.
    """
    data = load_body(_create_schema)

    with session_scope() as session:
        order = _service(session).place_order(g.current_user.id, data)
        payload = order.to_dict()

    get_metrics().increment_orders("pending")
    message = (
        "Order placed successfully! Please come to store for pickup."
        if payload["delivery_type"] == "pickup"
        else "Order placed successfully!"
    )
    return success_response(payload, message, 201)


@orders_bp.route("", methods=["GET"])
@login_required
def list_orders():
    """List the current user's orders, most recent first."""
    page = parse_int(request.args.get("page"), default=1, min_val=1, field_name="page")
    limit = parse_int(request.args.get("limit"), default=10, min_val=1, max_val=100, field_name="limit")
    status = request.args.get("status") or None
    if status and status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown status '{status}'")

    with session_scope() as session:
        orders, total = _service(session).list_orders(g.current_user.id, page, limit, status)
        items = [order.to_dict(include_items=False) for order in orders]

    return success_response(paginated(items, page, limit, total))


@orders_bp.route("/stats", methods=["GET"])
@login_required
def order_stats():
    with session_scope() as session:
        stats = _service(session).stats(g.current_user.id)
    return success_response(stats)


@orders_bp.route("/<int:order_id>", methods=["GET"])
@login_required
def get_order(order_id: int):
    """Get a single order with all line items. Admins may read any order."""
    owner = None if g.current_user.is_admin else g.current_user.id
    with session_scope() as session:
        payload = _service(session).get_order(order_id, owner).to_dict()
    return success_response(payload)


@orders_bp.route("/<int:order_id>/cancel", methods=["PUT"])
@login_required
def cancel_order(order_id: int):
    data = load_body(_cancel_schema) if request.content_length else {"reason": ""}

    with session_scope() as session:
        order = _service(session).cancel_order(order_id, g.current_user.id, data["reason"])
        payload = order.to_dict()

    get_metrics().increment_orders("cancelled")
    return success_response(payload, "Order cancelled successfully.")


@orders_bp.route("/<int:order_id>/status", methods=["PUT"])
@admin_required
def update_order_status(order_id: int):
    data = load_body(_status_schema)

    with session_scope() as session:
        order = _service(session).update_status(order_id, data["status"], data["note"])
        payload = order.to_dict()

    get_metrics().increment_orders(data["status"])
    logger.info(f"Admin {g.current_user.id} set order {order_id} to {data['status']}")
    return success_response(payload, "Order status updated.")
