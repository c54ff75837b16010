# Overview: Service-layer operations for dashboards, user administration and reporting.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, Quote, SampleRequest, User
from ..permissions import Role
from ..time_utils import parse_iso_datetime, to_utc_z
from . import access_policy, security_service


REVENUE_STATUS = "DELIVERED"


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise ValidationError("start/end must be ISO-8601 dates", errors={"range": "invalid date"}) from None
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must be before end", errors={"range": "start after end"})
    return start_dt, end_dt


def _status_counts(model, *criteria) -> dict[str, int]:
    rows = (
        db.session.query(model.status, func.count(model.id))
        .filter(*criteria)
        .group_by(model.status)
        .all()
    )
    return {status: count for status, count in rows}


def admin_summary(recent_limit: int = 5) -> dict:
    order_counts = _status_counts(Order)
    revenue = (
        db.session.query(func.coalesce(func.sum(Order.total_amount_paise), 0))
        .filter(Order.status == REVENUE_STATUS)
        .scalar()
    )
    users_by_role = dict(
        db.session.query(User.role, func.count(User.id)).group_by(User.role).all()
    )
    recent = (
        db.session.query(Order)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(recent_limit)
        .all()
    )
    quote_counts = _status_counts(Quote)
    sample_counts = _status_counts(SampleRequest)

    return {
        "orders": {
            "total": sum(order_counts.values()),
            "by_status": order_counts,
        },
        "revenue_paise": int(revenue),
        "quotes": {
            "pending": quote_counts.get("REQUESTED", 0),
            "by_status": quote_counts,
        },
        "samples": {
            "pending": sample_counts.get("REQUESTED", 0),
            "by_status": sample_counts,
        },
        "users": {
            "total": sum(users_by_role.values()),
            "by_role": users_by_role,
        },
        "recent_orders": [order.to_dict(include_items=False) for order in recent],
    }


def customer_summary(user: User, recent_limit: int = 5) -> dict:
    """Dealer / B2B / retail dashboard, scoped to the caller's own records."""
    order_counts = _status_counts(Order, Order.customer_id == user.id)
    spent = (
        db.session.query(func.coalesce(func.sum(Order.total_amount_paise), 0))
        .filter(Order.customer_id == user.id, Order.status != "CANCELLED")
        .scalar()
    )
    quote_counts = _status_counts(Quote, Quote.customer_id == user.id)
    recent_orders = (
        db.session.query(Order)
        .filter(Order.customer_id == user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(recent_limit)
        .all()
    )
    recent_quotes = (
        db.session.query(Quote)
        .filter(Quote.customer_id == user.id)
        .order_by(Quote.created_at.desc(), Quote.id.desc())
        .limit(recent_limit)
        .all()
    )
    return {
        "role": user.role,
        "price_tier": access_policy.price_tier_for(user.role).value,
        "orders": {
            "total": sum(order_counts.values()),
            "by_status": order_counts,
            "active": sum(
                count for status, count in order_counts.items()
                if status not in ("DELIVERED", "CANCELLED")
            ),
        },
        "total_spent_paise": int(spent),
        "quotes": {
            "total": sum(quote_counts.values()),
            "awaiting_decision": quote_counts.get("QUOTED", 0),
            "by_status": quote_counts,
        },
        "recent_orders": [order.to_dict(include_items=False) for order in recent_orders],
        "recent_quotes": [
            {
                "id": quote.id,
                "quote_number": quote.quote_number,
                "status": quote.status,
                "total_amount_paise": quote.total_amount_paise,
                "created_at": to_utc_z(quote.created_at),
            }
            for quote in recent_quotes
        ],
    }


# =============================================================================
# USER ADMINISTRATION
# =============================================================================

def list_users(*, role: str | None = None, search: str | None = None, page: int = 1, limit: int = 20) -> tuple[list[User], int]:
    q = db.session.query(User)
    if role:
        try:
            q = q.filter(User.role == Role.parse(role).value)
        except ValueError as exc:
            raise ValidationError(str(exc), errors={"role": "invalid"}) from None
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(User.email.ilike(pattern), User.name.ilike(pattern), User.company_name.ilike(pattern)))
    total = q.count()
    rows = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def set_user_role(admin: User, user_id: int, role) -> User:
    """Explicit admin role change; an admin can never demote themselves."""
    access_policy.require_admin(admin, "change_role")
    try:
        new_role = Role.parse(role)
    except ValueError as exc:
        raise ValidationError(str(exc), errors={"role": "invalid"}) from None

    user = _get_user(user_id)
    if user.id == admin.id and new_role is not Role.ADMIN:
        raise ValidationError("You cannot change your own admin role", errors={"role": "cannot demote yourself"})

    old_role = user.role
    user.role = new_role.value
    security_service.log_security_event(
        user_id=admin.id,
        event_type="ROLE_CHANGED",
        success=True,
        resource=f"user:{user.id}",
        action="change_role",
        reason=f"{old_role} -> {new_role.value}",
    )
    db.session.commit()
    current_app.logger.info("User %s role %s -> %s by admin %s", user.id, old_role, new_role.value, admin.id)
    return user


def set_user_status(admin: User, user_id: int, is_active: bool) -> User:
    access_policy.require_admin(admin, "change_status")
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean", errors={"is_active": "must be a boolean"})
    user = _get_user(user_id)
    if user.id == admin.id and not is_active:
        raise ValidationError("You cannot deactivate your own account", errors={"is_active": "cannot deactivate yourself"})

    user.is_active = is_active
    if not is_active:
        user.refresh_token_hash = None
    security_service.log_security_event(
        user_id=admin.id,
        event_type="USER_STATUS_CHANGED",
        success=True,
        resource=f"user:{user.id}",
        action="change_status",
        reason="activated" if is_active else "deactivated",
    )
    db.session.commit()
    return user


# =============================================================================
# REPORTS
# =============================================================================

def sales_report(*, start: str | None = None, end: str | None = None, group_by: str = "day") -> dict:
    """Non-cancelled order volume per period."""
    start_dt, end_dt = _parse_range(start, end)

    if group_by == "day":
        period_expr = func.strftime("%Y-%m-%d", Order.created_at)
    elif group_by == "week":
        period_expr = func.strftime("%Y-W%W", Order.created_at)
    elif group_by == "month":
        period_expr = func.strftime("%Y-%m", Order.created_at)
    else:
        raise ValidationError("group_by must be day, week, or month", errors={"group_by": "invalid"})

    query = db.session.query(
        period_expr.label("period"),
        func.count(func.distinct(Order.id)).label("order_count"),
        func.coalesce(func.sum(OrderItem.quantity), 0).label("items_sold"),
        func.coalesce(func.sum(OrderItem.line_total_paise), 0).label("gross_sales_paise"),
    ).join(OrderItem, OrderItem.order_id == Order.id).filter(Order.status != "CANCELLED")

    if start_dt:
        query = query.filter(Order.created_at >= start_dt)
    if end_dt:
        query = query.filter(Order.created_at <= end_dt)

    rows = query.group_by("period").order_by("period").all()
    return {
        "group_by": group_by,
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "rows": [
            {
                "period": row.period,
                "order_count": row.order_count,
                "items_sold": int(row.items_sold),
                "gross_sales_paise": int(row.gross_sales_paise),
            }
            for row in rows
        ],
        "totals": {
            "order_count": sum(row.order_count for row in rows),
            "gross_sales_paise": sum(int(row.gross_sales_paise) for row in rows),
        },
    }
