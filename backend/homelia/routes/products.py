# Overview: Catalog API routes; prices are shown for the caller's tier only.

from flask import Blueprint, request, g

from ..decorators import get_json_body, optional_auth, require_admin, require_auth
from ..responses import ok, paginated, pagination_params
from ..services import catalog_service


products_bp = Blueprint("products", __name__, url_prefix="/api/products")

FILTER_KEYS = (
    "brand", "category", "finish", "collection", "search",
    "min_price", "max_price", "in_stock", "featured", "bestseller",
    "sort_by", "sort_order",
)


def _caller_role():
    principal = getattr(g, "principal", None)
    return principal.role if principal else None


@products_bp.get("")
@optional_auth
def list_products():
    """
    Query params: brand, category, finish, collection, search, min_price,
    max_price (paise), in_stock, featured, bestseller, sort_by
    (name|price|created_at), sort_order (asc|desc), page, limit.
    """
    page, limit = pagination_params()
    filters = {key: request.args.get(key) for key in FILTER_KEYS if request.args.get(key) is not None}
    items, total = catalog_service.list_products(role=_caller_role(), filters=filters, page=page, limit=limit)
    return paginated(items, total, page, limit)


@products_bp.get("/featured")
@optional_auth
def featured():
    return ok(catalog_service.featured_products(_caller_role()))


@products_bp.get("/bestsellers")
@optional_auth
def bestsellers():
    return ok(catalog_service.bestseller_products(_caller_role()))


@products_bp.get("/brand/<brand>")
@optional_auth
def products_by_brand(brand: str):
    """Active products of one brand (case-insensitive), newest first; ?limit= caps the list."""
    _, limit = pagination_params()
    items, _ = catalog_service.list_products(role=_caller_role(), filters={"brand": brand}, limit=limit)
    return ok(items)


@products_bp.get("/collections")
def collections():
    return ok(catalog_service.list_collections())


@products_bp.get("/<int:product_id>")
@optional_auth
def get_product(product_id: int):
    product = catalog_service.get_product(product_id)
    return ok(catalog_service.serialize_product(product, _caller_role()))


@products_bp.post("")
@require_auth
@require_admin
def create_product():
    product = catalog_service.create_product(get_json_body())
    return ok(product.to_admin_dict(), message="Product created", status=201)


@products_bp.put("/<int:product_id>")
@require_auth
@require_admin
def update_product(product_id: int):
    product = catalog_service.update_product(product_id, get_json_body())
    return ok(product.to_admin_dict(), message="Product updated")


@products_bp.patch("/<int:product_id>/stock")
@require_auth
@require_admin
def update_stock(product_id: int):
    product = catalog_service.update_stock(product_id, get_json_body().get("stock_quantity"))
    return ok(product.to_admin_dict(), message="Stock updated")


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product(product_id: int):
    """Soft delete (is_active = false)."""
    catalog_service.deactivate_product(product_id)
    return ok(message="Product deactivated")
