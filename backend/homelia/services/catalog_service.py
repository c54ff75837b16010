# backend/homelia/services/catalog_service.py
"""
Catalog Service

Every product leaving this module is serialized for a role: the only price
exposed is the tier that role may see (access_policy.visible_price_paise).
Admin-facing helpers return all three tiers.
"""
from __future__ import annotations

from sqlalchemy import func, or_

from ..errors import ConflictError, NotFound, ValidationError
from ..extensions import db
from ..models import Product
from ..permissions import PriceTier
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_product,
    validate_payload,
)
from . import access_policy


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_code", "name", "brand", "category", "collection", "finish",
        "thickness", "sheet_size", "description",
        "price_paise", "b2b_price_paise", "dealer_price_paise",
        "is_price_on_request", "moq", "stock_quantity",
        "is_active", "is_featured", "is_bestseller",
    },
    required_on_create={"product_code", "name", "brand", "category"},
)

SORT_FIELDS = {"name", "price", "created_at"}


def _tier_price_column(role):
    """SQL expression equivalent to visible_price_paise for a role."""
    tier = access_policy.price_tier_for(role)
    if tier is PriceTier.DEALER:
        return func.coalesce(Product.dealer_price_paise, Product.b2b_price_paise, Product.price_paise)
    if tier is PriceTier.B2B:
        return func.coalesce(Product.b2b_price_paise, Product.price_paise)
    return Product.price_paise


def serialize_product(product: Product, role) -> dict:
    return product.to_dict(visible_price_paise=access_policy.visible_price_paise(role, product))


def _truthy(value) -> bool:
    return str(value).strip().lower() in ("true", "1", "yes")


def list_products(
    *,
    role=None,
    filters: dict | None = None,
    page: int = 1,
    limit: int = 20,
    include_inactive: bool = False,
) -> tuple[list[dict], int]:
    """
    Filter, sort and paginate the catalog.

    filters: brand, category, finish, collection, search, min_price,
    max_price (paise, against the caller's tier), in_stock, featured,
    bestseller, sort_by (name|price|created_at), sort_order (asc|desc).
    """
    filters = filters or {}
    price_col = _tier_price_column(role)

    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))

    for field in ("brand", "category", "finish", "collection"):
        value = filters.get(field)
        if value:
            q = q.filter(func.lower(getattr(Product, field)) == str(value).strip().lower())

    search = (filters.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(
            Product.name.ilike(pattern),
            Product.product_code.ilike(pattern),
            Product.description.ilike(pattern),
        ))

    if filters.get("min_price") not in (None, ""):
        q = q.filter(price_col >= coerce_int(filters["min_price"], "min_price"))
    if filters.get("max_price") not in (None, ""):
        q = q.filter(price_col <= coerce_int(filters["max_price"], "max_price"))

    if _truthy(filters.get("in_stock", "")):
        q = q.filter(Product.stock_quantity > 0)
    if _truthy(filters.get("featured", "")):
        q = q.filter(Product.is_featured.is_(True))
    if _truthy(filters.get("bestseller", "")):
        q = q.filter(Product.is_bestseller.is_(True))

    sort_by = filters.get("sort_by") or "created_at"
    if sort_by not in SORT_FIELDS:
        raise ValidationError(
            f"Invalid sort_by '{sort_by}'",
            errors={"sort_by": "must be one of " + ", ".join(sorted(SORT_FIELDS))},
        )
    sort_col = {"name": Product.name, "price": price_col, "created_at": Product.created_at}[sort_by]
    descending = (filters.get("sort_order") or "desc").lower() == "desc"
    q = q.order_by(sort_col.desc() if descending else sort_col.asc(), Product.id.asc())

    total = q.count()
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return [serialize_product(p, role) for p in rows], total


def get_product(product_id: int, *, include_inactive: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or (not product.is_active and not include_inactive):
        raise NotFound("Product not found")
    return product


def featured_products(role=None, limit: int = 8) -> list[dict]:
    rows = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.is_featured.is_(True))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .all()
    )
    return [serialize_product(p, role) for p in rows]


def bestseller_products(role=None, limit: int = 8) -> list[dict]:
    rows = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.is_bestseller.is_(True))
        .order_by(Product.name.asc(), Product.id.asc())
        .limit(limit)
        .all()
    )
    return [serialize_product(p, role) for p in rows]


def list_collections() -> list[dict]:
    rows = (
        db.session.query(Product.brand, Product.collection, func.count(Product.id))
        .filter(Product.is_active.is_(True), Product.collection.isnot(None))
        .group_by(Product.brand, Product.collection)
        .order_by(Product.brand.asc(), Product.collection.asc())
        .all()
    )
    return [{"brand": brand, "collection": collection, "product_count": count} for brand, collection, count in rows]


def create_product(payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    if db.session.query(Product).filter_by(product_code=patch["product_code"]).first():
        raise ConflictError("Product code already exists", errors={"product_code": "already exists"})
    if not patch.get("is_price_on_request") and patch.get("price_paise") is None:
        raise ValidationError(
            "price_paise is required unless the product is price on request",
            errors={"price_paise": "required"},
        )

    product = Product(**patch)
    db.session.add(product)
    db.session.commit()
    return product


def update_product(product_id: int, payload: dict) -> Product:
    product = get_product(product_id, include_inactive=True)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    code = patch.get("product_code")
    if code and code != product.product_code:
        clash = db.session.query(Product).filter(Product.product_code == code, Product.id != product.id).first()
        if clash:
            raise ConflictError("Product code already exists", errors={"product_code": "already exists"})

    for key, value in patch.items():
        setattr(product, key, value)

    if not product.is_price_on_request and product.price_paise is None:
        raise ValidationError(
            "price_paise is required unless the product is price on request",
            errors={"price_paise": "required"},
        )
    db.session.commit()
    return product


def update_stock(product_id: int, stock_quantity) -> Product:
    product = get_product(product_id, include_inactive=True)
    quantity = coerce_int(stock_quantity, "stock_quantity")
    if quantity < 0:
        raise ValidationError("stock_quantity must be >= 0", errors={"stock_quantity": "must be >= 0"})
    product.stock_quantity = quantity
    db.session.commit()
    return product


def deactivate_product(product_id: int) -> Product:
    """Soft delete: orders and quotes keep pointing at the row."""
    product = get_product(product_id, include_inactive=True)
    product.is_active = False
    db.session.commit()
    return product
