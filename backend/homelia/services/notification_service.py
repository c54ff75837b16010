# Overview: Service-layer operations for in-app notifications.

"""
In-app notifications only; there is no email/SMS delivery.

The notify_* helpers add rows to the caller's unit of work (no commit), so a
notification exists only if the order/quote/sample that triggered it was
committed.
"""

from __future__ import annotations

from sqlalchemy import or_

from ..errors import NotFound
from ..extensions import db
from ..models import Notification, User
from ..permissions import Role
from ..time_utils import utcnow


# Notification types
NEW_ORDER = "NEW_ORDER"
ORDER_STATUS = "ORDER_STATUS"
NEW_QUOTE = "NEW_QUOTE"
QUOTE_STATUS = "QUOTE_STATUS"
SAMPLE_REQUEST = "SAMPLE_REQUEST"
NEW_USER = "NEW_USER"


def _format_inr(paise: int) -> str:
    return f"₹{paise / 100:,.2f}"


def create_notification(
    *,
    notification_type: str,
    title: str,
    message: str,
    data: dict | None = None,
    recipient_id: int | None = None,
    recipient_role: Role | None = None,
) -> Notification:
    notification = Notification(
        type=notification_type,
        title=title,
        message=message,
        data=data,
        recipient_id=recipient_id,
        recipient_role=recipient_role.value if recipient_role else None,
    )
    db.session.add(notification)
    return notification


def _display_name(user: User | None) -> str:
    if user is None:
        return "Customer"
    return user.company_name or user.name or "Customer"


def notify_new_order(order) -> Notification:
    return create_notification(
        notification_type=NEW_ORDER,
        title="New Order Received",
        message=(
            f"Order {order.order_number} placed by {_display_name(order.customer)} "
            f"for {_format_inr(order.total_amount_paise)}"
        ),
        data={"order_id": order.id, "order_number": order.order_number},
        recipient_role=Role.ADMIN,
    )


def notify_order_status(order) -> Notification:
    return create_notification(
        notification_type=ORDER_STATUS,
        title="Order Status Updated",
        message=f"Your order {order.order_number} is now {order.status}",
        data={"order_id": order.id, "order_number": order.order_number, "status": order.status},
        recipient_id=order.customer_id,
    )


def notify_new_quote(quote) -> Notification:
    return create_notification(
        notification_type=NEW_QUOTE,
        title="New Quote Request",
        message=(
            f"RFQ {quote.quote_number} submitted by {_display_name(quote.customer)} "
            f"with {len(quote.items)} products"
        ),
        data={"quote_id": quote.id, "quote_number": quote.quote_number},
        recipient_role=Role.ADMIN,
    )


def notify_quote_status(quote) -> Notification:
    return create_notification(
        notification_type=QUOTE_STATUS,
        title="Quote Updated",
        message=f"Your quote {quote.quote_number} is now {quote.status}",
        data={"quote_id": quote.id, "quote_number": quote.quote_number, "status": quote.status},
        recipient_id=quote.customer_id,
    )


def notify_sample_request(sample) -> Notification:
    return create_notification(
        notification_type=SAMPLE_REQUEST,
        title="New Sample Request",
        message=(
            f"Sample request {sample.request_number} from {sample.name} "
            f"for {sample.total_samples} samples"
        ),
        data={"sample_request_id": sample.id, "request_number": sample.request_number},
        recipient_role=Role.ADMIN,
    )


def notify_new_user(user: User) -> Notification:
    return create_notification(
        notification_type=NEW_USER,
        title="New Registration",
        message=f"{_display_name(user)} registered as {user.role}",
        data={"user_id": user.id, "role": user.role},
        recipient_role=Role.ADMIN,
    )


def _visible_to(user: User):
    return or_(
        Notification.recipient_id == user.id,
        Notification.recipient_role == user.role,
    )


def list_for_user(user: User, *, unread_only: bool = False, page: int = 1, limit: int = 20) -> tuple[list[Notification], int]:
    q = db.session.query(Notification).filter(_visible_to(user))
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    total = q.count()
    rows = (
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def unread_count(user: User) -> int:
    return (
        db.session.query(Notification)
        .filter(_visible_to(user), Notification.is_read.is_(False))
        .count()
    )


def mark_read(user: User, notification_id: int) -> Notification:
    notification = (
        db.session.query(Notification)
        .filter(Notification.id == notification_id, _visible_to(user))
        .first()
    )
    if notification is None:
        raise NotFound("Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.session.commit()
    return notification


def mark_all_read(user: User) -> int:
    now = utcnow()
    rows = (
        db.session.query(Notification)
        .filter(_visible_to(user), Notification.is_read.is_(False))
        .all()
    )
    for notification in rows:
        notification.is_read = True
        notification.read_at = now
    db.session.commit()
    return len(rows)
