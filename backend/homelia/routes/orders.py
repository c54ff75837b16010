# backend/homelia/routes/orders.py
"""
Order API routes: checkout, listing and lifecycle transitions.

Legality lives in order_service.ORDER_TRANSITIONS; ownership and role checks
live in access_policy. Routes only translate HTTP to service calls.
"""
from flask import Blueprint, request, g

from ..decorators import get_json_body, require_admin, require_auth
from ..responses import ok, paginated, pagination_params
from ..services import order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
def create_order():
    """
    Checkout.

    Request body:
    {
        "items": [{"product_id": int, "quantity": int}, ...],
        "shipping_address": {...},
        "billing_address": {...},
        "notes": str (optional)
    }

    Returns:
        201: Order created (status PENDING)
        400: Validation error (empty items, MOQ, price-on-request, ...)
    """
    data = get_json_body()
    order = order_service.create_order(
        g.current_user,
        data.get("items"),
        data.get("shipping_address"),
        data.get("billing_address"),
        data.get("notes"),
    )
    return ok(order.to_dict(), message="Order placed", status=201)


@orders_bp.get("")
@require_auth
def list_orders():
    page, limit = pagination_params()
    rows, total = order_service.list_orders(g.principal, status=request.args.get("status"), page=page, limit=limit)
    return paginated([o.to_dict() for o in rows], total, page, limit)


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order(order_id: int):
    return ok(order_service.get_order(order_id, g.principal).to_dict())


@orders_bp.get("/<int:order_id>/history")
@require_auth
def order_history(order_id: int):
    entries = order_service.order_history(order_id, g.principal)
    return ok([entry.to_dict() for entry in entries])


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_admin
def update_status(order_id: int):
    """
    Admin status change.

    Request body:
    {"status": str, "note": str (optional), "admin_notes": str (optional)}

    Returns:
        200: Order updated
        409: Illegal transition
    """
    data = get_json_body()
    order = order_service.transition(
        order_id,
        data.get("status"),
        g.principal,
        note=data.get("note"),
        admin_notes=data.get("admin_notes"),
    )
    return ok(order.to_dict(), message=f"Order status updated to {order.status}")


@orders_bp.patch("/<int:order_id>/cancel")
@require_auth
def cancel_order(order_id: int):
    order = order_service.cancel_order(order_id, g.principal, get_json_body().get("reason"))
    return ok(order.to_dict(), message="Order cancelled")
