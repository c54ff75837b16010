# Overview: Role-scoped customer/dealer dashboard.

from flask import Blueprint, g

from ..decorators import require_auth
from ..responses import ok
from ..services import dashboard_service


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/summary")
@require_auth
def summary():
    """Own orders and quotes only, whatever the caller's role."""
    return ok(dashboard_service.customer_summary(g.current_user))
