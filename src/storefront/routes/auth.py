import logging

from flask import Blueprint, g

from storefront.routes.schemas import LoginSchema, ProfileSchema, RegisterSchema
from storefront.routes.utils import (
    get_metrics,
    get_tokens,
    load_body,
    login_required,
    session_scope,
    success_response,
)
from storefront.services import AuthService, UserService

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)

_register_schema = RegisterSchema()
_login_schema = LoginSchema()
_profile_schema = ProfileSchema()


@auth_bp.route("/register", methods=["POST"])
def register():
    """Create a local account and return it with an access token."""
    data = load_body(_register_schema)

    with session_scope() as session:
        auth = AuthService(session, get_tokens())
        user = auth.register(data)
        token = get_tokens().create_access_token(user)
        payload = {"token": token, "user": user.to_dict()}

    get_metrics().increment_user_registrations()
    return success_response(payload, "Registration successful.", 201)


@auth_bp.route("/login", methods=["POST"])
def login():
    data = load_body(_login_schema)

    with session_scope() as session:
        payload = AuthService(session, get_tokens()).login(data["email"], data["password"])

    return success_response(payload, "Login successful.")


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return success_response(g.current_user.to_dict())


@auth_bp.route("/profile", methods=["GET"])
@login_required
def get_profile():
    with session_scope() as session:
        payload = UserService(session).get_user(g.current_user.id).to_dict()
    return success_response(payload)


@auth_bp.route("/profile", methods=["PUT"])
@login_required
def update_profile():
    """Update the signed-in user's own details. Role and status stay admin-only."""
    data = load_body(_profile_schema, partial=True)

    with session_scope() as session:
        payload = UserService(session).update_profile(g.current_user.id, data).to_dict()

    return success_response(payload, "Profile updated.")


# ------------------------------------------------------------------ #
# Wishlist                                                             #
# ------------------------------------------------------------------ #
def _wishlist_payload(products):
    items = [product.to_dict() for product in products]
    return {"items": items, "count": len(items)}


@auth_bp.route("/wishlist", methods=["GET"])
@login_required
def get_wishlist():
    with session_scope() as session:
        payload = _wishlist_payload(UserService(session).wishlist(g.current_user.id))
    return success_response(payload)


@auth_bp.route("/wishlist/<int:product_id>", methods=["POST"])
@login_required
def add_to_wishlist(product_id: int):
    with session_scope() as session:
        payload = _wishlist_payload(UserService(session).add_to_wishlist(g.current_user.id, product_id))
    return success_response(payload, "Added to wishlist.")


@auth_bp.route("/wishlist/<int:product_id>", methods=["DELETE"])
@login_required
def remove_from_wishlist(product_id: int):
    with session_scope() as session:
        payload = _wishlist_payload(UserService(session).remove_from_wishlist(g.current_user.id, product_id))
    return success_response(payload, "Removed from wishlist.")
