import logging

from flask import Blueprint, request

from storefront.exceptions import ValidationError
from storefront.routes.schemas import ProductSchema
from storefront.routes.utils import (
    admin_required,
    get_metrics,
    load_body,
    paginated,
    parse_bool,
    parse_int,
    session_scope,
    success_response,
)
from storefront.services import CatalogService

logger = logging.getLogger(__name__)

products_bp = Blueprint("products", __name__)

_product_schema = ProductSchema()


@products_bp.route("", methods=["GET"])
def list_products():
    """List products with page pagination, filtering, and search."""
    page = parse_int(request.args.get("page"), default=1, min_val=1, field_name="page")
    limit = parse_int(request.args.get("limit"), default=20, min_val=1, max_val=100, field_name="limit")
    category = request.args.get("category", "").strip() or None

    search_query = request.args.get("q", "").strip()
    if search_query and len(search_query) < 2:
        raise ValidationError("Search query must be at least 2 characters.")
    if len(search_query) > 100:
        raise ValidationError("Search query cannot exceed 100 characters.")

    min_price_cents = parse_int(request.args.get("min_price_cents"), min_val=0, field_name="min_price_cents")
    max_price_cents = parse_int(request.args.get("max_price_cents"), min_val=0, field_name="max_price_cents")
    if min_price_cents is not None and max_price_cents is not None and min_price_cents > max_price_cents:
        raise ValidationError("min_price_cents cannot be greater than max_price_cents.")

    in_stock = parse_bool(request.args.get("in_stock"), default=None)

    with session_scope() as session:
        products, total = CatalogService(session).list_products(
            page=page,
            limit=limit,
            category_slug=category,
            search=search_query or None,
            min_price_cents=min_price_cents,
            max_price_cents=max_price_cents,
            in_stock=in_stock,
        )
        items = [p.to_dict() for p in products]

    return success_response(paginated(items, page, limit, total))


@products_bp.route("/featured", methods=["GET"])
def featured_products():
    limit = parse_int(request.args.get("limit"), default=8, min_val=1, max_val=50, field_name="limit")
    with session_scope() as session:
        items = [p.to_dict() for p in CatalogService(session).featured_products(limit)]
    return success_response({"items": items, "count": len(items)})


@products_bp.route("/sale", methods=["GET"])
def products_on_sale():
    limit = parse_int(request.args.get("limit"), default=20, min_val=1, max_val=100, field_name="limit")
    with session_scope() as session:
        items = [p.to_dict() for p in CatalogService(session).products_on_sale(limit)]
    return success_response({"items": items, "count": len(items)})


@products_bp.route("/<int:product_id>", methods=["GET"])
def get_product(product_id: int):
    with session_scope() as session:
        product = CatalogService(session).get_product(product_id)
        data = product.to_dict()

    get_metrics().increment_product_views()
    return success_response(data)


@products_bp.route("", methods=["POST"])
@admin_required
def create_product():
    data = load_body(_product_schema)

    with session_scope() as session:
        product = CatalogService(session).create_product(data)
        payload = product.to_dict()

    return success_response(payload, "Product created.", 201)


@products_bp.route("/<int:product_id>", methods=["PUT"])
@admin_required
def update_product(product_id: int):
    data = load_body(_product_schema, partial=True)

    with session_scope() as session:
        product = CatalogService(session).update_product(product_id, data)
        payload = product.to_dict()

    return success_response(payload, "Product updated.")


@products_bp.route("/<int:product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id: int):
    with session_scope() as session:
        deleted = CatalogService(session).delete_product(product_id)

    if not deleted:
        logger.info(f"Product {product_id} kept for order history and deactivated")
        return success_response({"id": product_id, "deleted": False}, "Product deactivated.")
    return success_response({"id": product_id, "deleted": True}, "Product deleted.")
