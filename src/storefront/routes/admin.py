import logging

from flask import Blueprint, g, request

from storefront.exceptions import ValidationError
from storefront.models import ORDER_STATUSES
from storefront.models.user import USER_ROLES
from storefront.routes.schemas import AdminUserSchema
from storefront.routes.utils import (
    admin_required,
    load_body,
    paginated,
    parse_int,
    session_scope,
    success_response,
)
from storefront.services import AdminService, OrderService, UserService

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)

_user_schema = AdminUserSchema()


def _page_args():
    page = parse_int(request.args.get("page"), default=1, min_val=1, field_name="page")
    limit = parse_int(request.args.get("limit"), default=20, min_val=1, max_val=100, field_name="limit")
    return page, limit


# ------------------------------------------------------------------ #
# Users                                                                #
# ------------------------------------------------------------------ #
@admin_bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    page, limit = _page_args()
    role = request.args.get("role") or None
    if role and role not in USER_ROLES:
        raise ValidationError(f"Unknown role '{role}'")

    with session_scope() as session:
        users, total = UserService(session).list_users(page, limit, request.args.get("search"), role)
        items = [user.to_dict() for user in users]

    return success_response(paginated(items, page, limit, total))


@admin_bp.route("/users", methods=["POST"])
@admin_required
def create_user():
    data = load_body(_user_schema)

    with session_scope() as session:
        payload = UserService(session).create_user(data).to_dict()

    return success_response(payload, "User created.", 201)


@admin_bp.route("/users/<int:user_id>", methods=["GET"])
@admin_required
def get_user(user_id: int):
    with session_scope() as session:
        payload = UserService(session).get_user(user_id).to_dict()
    return success_response(payload)


@admin_bp.route("/users/<int:user_id>", methods=["PUT"])
@admin_required
def update_user(user_id: int):
    data = load_body(_user_schema, partial=True)

    with session_scope() as session:
        payload = UserService(session).update_user(user_id, data, g.current_user.id).to_dict()

    logger.info(f"Admin {g.current_user.id} updated user {user_id}")
    return success_response(payload, "User updated.")


@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id: int):
    """Delete a user; accounts with order history are deactivated instead."""
    with session_scope() as session:
        deleted = UserService(session).delete_user(user_id, g.current_user.id)

    logger.info(f"Admin {g.current_user.id} {'deleted' if deleted else 'deactivated'} user {user_id}")
    message = "User deleted." if deleted else "User has orders and was deactivated."
    return success_response({"id": user_id, "deleted": deleted}, message)


# ------------------------------------------------------------------ #
# Dashboard                                                            #
# ------------------------------------------------------------------ #
@admin_bp.route("/stats", methods=["GET"])
@admin_required
def dashboard_stats():
    with session_scope() as session:
        stats = AdminService(session).dashboard_stats()
    return success_response(stats)


@admin_bp.route("/orders", methods=["GET"])
@admin_required
def list_all_orders():
    """Every customer's orders, most recent first, with the buyer attached."""
    page, limit = _page_args()
    status = request.args.get("status") or None
    if status and status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown status '{status}'")

    with session_scope() as session:
        orders, total = OrderService(session).list_orders(None, page, limit, status)
        items = []
        for order in orders:
            data = order.to_dict(include_items=False)
            data["user"] = {
                "id": order.user_id,
                "first_name": order.user.first_name if order.user else None,
                "last_name": order.user.last_name if order.user else None,
                "email": order.user.email if order.user else None,
            }
            items.append(data)

    return success_response(paginated(items, page, limit, total))
