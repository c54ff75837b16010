# Overview: In-app notification API routes.

from flask import Blueprint, request, g

from ..decorators import require_auth
from ..responses import ok, paginated, pagination_params
from ..services import notification_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications():
    page, limit = pagination_params()
    unread_only = request.args.get("unread_only", "").lower() in ("true", "1", "yes")
    rows, total = notification_service.list_for_user(g.current_user, unread_only=unread_only, page=page, limit=limit)
    return paginated([n.to_dict() for n in rows], total, page, limit)


@notifications_bp.get("/unread-count")
@require_auth
def unread_count():
    return ok({"count": notification_service.unread_count(g.current_user)})


@notifications_bp.patch("/<int:notification_id>/read")
@require_auth
def mark_read(notification_id: int):
    notification = notification_service.mark_read(g.current_user, notification_id)
    return ok(notification.to_dict())


@notifications_bp.patch("/read-all")
@require_auth
def mark_all_read():
    updated = notification_service.mark_all_read(g.current_user)
    return ok({"updated": updated}, message="All notifications marked as read")
