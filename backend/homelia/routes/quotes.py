# backend/homelia/routes/quotes.py
"""
Quote (RFQ) API routes.
"""
from flask import Blueprint, request, g

from ..decorators import get_json_body, require_admin, require_auth
from ..responses import ok, paginated, pagination_params
from ..services import quote_service


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


@quotes_bp.post("")
@require_auth
def create_quote():
    """
    Request body:
    {
        "items": [{"product_id": int, "quantity": int, "notes": str (optional)}, ...],
        "notes": str (optional)
    }
    """
    data = get_json_body()
    quote = quote_service.create_quote(g.current_user, data.get("items"), data.get("notes"))
    return ok(quote.to_dict(), message="Quote request submitted", status=201)


@quotes_bp.get("")
@require_auth
def list_quotes():
    page, limit = pagination_params()
    rows, total = quote_service.list_quotes(g.principal, status=request.args.get("status"), page=page, limit=limit)
    return paginated([q.to_dict() for q in rows], total, page, limit)


@quotes_bp.get("/<int:quote_id>")
@require_auth
def get_quote(quote_id: int):
    return ok(quote_service.get_quote(quote_id, g.principal).to_dict())


@quotes_bp.patch("/<int:quote_id>/pricing")
@require_auth
@require_admin
def price_quote(quote_id: int):
    """
    Request body:
    {
        "items": [{"item_id": int, "quoted_price_paise": int}, ...],
        "valid_until": ISO-8601 (optional),
        "admin_notes": str (optional)
    }
    """
    data = get_json_body()
    quote = quote_service.price_quote(
        quote_id,
        data.get("items"),
        g.principal,
        valid_until=data.get("valid_until"),
        admin_notes=data.get("admin_notes"),
    )
    return ok(quote.to_dict(), message="Quote priced")


@quotes_bp.patch("/<int:quote_id>/approve")
@require_auth
def approve_quote(quote_id: int):
    quote = quote_service.approve_quote(quote_id, g.principal)
    return ok(quote.to_dict(), message="Quote approved")


@quotes_bp.patch("/<int:quote_id>/reject")
@require_auth
def reject_quote(quote_id: int):
    quote = quote_service.reject_quote(quote_id, g.principal, get_json_body().get("reason"))
    return ok(quote.to_dict(), message="Quote rejected")


@quotes_bp.post("/<int:quote_id>/convert")
@require_auth
def convert_quote(quote_id: int):
    data = get_json_body()
    order = quote_service.convert_to_order(
        quote_id,
        g.principal,
        data.get("shipping_address"),
        data.get("billing_address"),
        data.get("notes"),
    )
    return ok(order.to_dict(), message="Quote converted to order", status=201)
