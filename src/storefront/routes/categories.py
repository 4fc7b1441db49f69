from flask import Blueprint, request

from storefront.routes.schemas import CategorySchema
from storefront.routes.utils import (
    admin_required,
    load_body,
    parse_bool,
    session_scope,
    success_response,
)
from storefront.services import CatalogService

categories_bp = Blueprint("categories", __name__)

_category_schema = CategorySchema()


@categories_bp.route("", methods=["GET"])
def list_categories():
    """Active categories with their product counts, in display order."""
    include_inactive = parse_bool(request.args.get("include_inactive"), default=False)

    with session_scope() as session:
        rows = CatalogService(session).list_categories(include_inactive=include_inactive)
        items = [category.to_dict(product_count=count) for category, count in rows]

    return success_response({"items": items, "count": len(items)})


@categories_bp.route("/<slug>", methods=["GET"])
def get_category(slug: str):
    with session_scope() as session:
        category = CatalogService(session).get_category_by_slug(slug)
        data = category.to_dict()
        data["subcategories"] = [child.to_dict() for child in category.subcategories]

    return success_response(data)


@categories_bp.route("", methods=["POST"])
@admin_required
def create_category():
    data = load_body(_category_schema)

    with session_scope() as session:
        category = CatalogService(session).create_category(data)
        payload = category.to_dict()

    return success_response(payload, "Category created.", 201)


@categories_bp.route("/<int:category_id>", methods=["PUT"])
@admin_required
def update_category(category_id: int):
    data = load_body(_category_schema, partial=True)

    with session_scope() as session:
        category = CatalogService(session).update_category(category_id, data)
        payload = category.to_dict()

    return success_response(payload, "Category updated.")


@categories_bp.route("/<int:category_id>", methods=["DELETE"])
@admin_required
def delete_category(category_id: int):
    with session_scope() as session:
        CatalogService(session).delete_category(category_id)

    return success_response({"id": category_id}, "Category deleted.")
