# Overview: Admin API routes (dashboard, user administration, reports).

from flask import Blueprint, request, g

from ..decorators import get_json_body, require_admin, require_auth
from ..responses import ok, paginated, pagination_params
from ..services import dashboard_service, security_service


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/dashboard")
@require_auth
@require_admin
def dashboard():
    return ok(dashboard_service.admin_summary())


@admin_bp.get("/users")
@require_auth
@require_admin
def list_users():
    """Query params: role, search, page, limit."""
    page, limit = pagination_params()
    rows, total = dashboard_service.list_users(
        role=request.args.get("role"),
        search=request.args.get("search"),
        page=page,
        limit=limit,
    )
    return paginated([u.to_dict() for u in rows], total, page, limit)


@admin_bp.patch("/users/<int:user_id>/role")
@require_auth
@require_admin
def set_user_role(user_id: int):
    """
    Request body: {"role": "ADMIN" | "DEALER" | "B2B_CUSTOMER" | "RETAIL_CUSTOMER"}

    Returns:
        200: Role changed
        400: Invalid role, or an admin demoting themselves
    """
    user = dashboard_service.set_user_role(g.current_user, user_id, get_json_body().get("role"))
    return ok(user.to_dict(), message=f"Role changed to {user.role}")


@admin_bp.patch("/users/<int:user_id>/status")
@require_auth
@require_admin
def set_user_status(user_id: int):
    """Request body: {"is_active": bool}"""
    user = dashboard_service.set_user_status(g.current_user, user_id, get_json_body().get("is_active"))
    return ok(user.to_dict(), message="User activated" if user.is_active else "User deactivated")


@admin_bp.get("/reports/sales")
@require_auth
@require_admin
def sales_report():
    """Query params: start, end (ISO-8601), group_by (day|week|month)."""
    report = dashboard_service.sales_report(
        start=request.args.get("start"),
        end=request.args.get("end"),
        group_by=request.args.get("group_by", "day"),
    )
    return ok(report)


@admin_bp.get("/security-events")
@require_auth
@require_admin
def security_events():
    """Query params: user_id, event_type, limit (max 500)."""
    try:
        limit = min(500, max(1, int(request.args.get("limit", 100))))
    except ValueError:
        limit = 100
    user_id = request.args.get("user_id", type=int)
    events = security_service.list_security_events(
        user_id=user_id,
        event_type=request.args.get("event_type"),
        limit=limit,
    )
    return ok([event.to_dict() for event in events])
