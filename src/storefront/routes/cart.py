from flask import Blueprint, g

from storefront.routes.schemas import AddCartItemSchema, UpdateCartItemSchema
from storefront.routes.utils import load_body, login_required, session_scope, success_response
from storefront.services import CartService

cart_bp = Blueprint("cart", __name__)

_add_schema = AddCartItemSchema()
_update_schema = UpdateCartItemSchema()


@cart_bp.route("", methods=["GET"])
@login_required
def get_cart():
    """Return the current user's cart, creating it if it doesn't exist."""
    with session_scope() as session:
        cart = CartService(session).get_or_create_cart(g.current_user.id)
        payload = CartService.summarize(cart)
    return success_response(payload)


@cart_bp.route("/items", methods=["POST"])
@login_required
def add_cart_item():
    """Add a product to the cart, or increment its quantity if already present."""
    data = load_body(_add_schema)

    with session_scope() as session:
        cart = CartService(session).add_item(g.current_user.id, data["product_id"], data["quantity"])
        payload = CartService.summarize(cart)

    return success_response(payload, "Item added to cart.", 201)


@cart_bp.route("/items/<int:product_id>", methods=["PUT"])
@login_required
def update_cart_item(product_id: int):
    """Update the quantity of a cart line. Setting quantity to 0 removes it."""
    data = load_body(_update_schema)

    with session_scope() as session:
        cart = CartService(session).update_item(g.current_user.id, product_id, data["quantity"])
        payload = CartService.summarize(cart)

    message = "Item removed from cart." if data["quantity"] == 0 else "Cart item updated."
    return success_response(payload, message)


@cart_bp.route("/items/<int:product_id>", methods=["DELETE"])
@login_required
def delete_cart_item(product_id: int):
    with session_scope() as session:
        cart = CartService(session).remove_item(g.current_user.id, product_id)
        payload = CartService.summarize(cart)
    return success_response(payload, "Item removed from cart.")


@cart_bp.route("", methods=["DELETE"])
@login_required
def clear_cart():
    with session_scope() as session:
        cart = CartService(session).clear(g.current_user.id)
        payload = CartService.summarize(cart)
    return success_response(payload, "Cart cleared.")
