# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Order Lifecycle Service

State machine:
    PENDING    -> CONFIRMED | CANCELLED
    CONFIRMED  -> PROCESSING | CANCELLED
    PROCESSING -> SHIPPED | CANCELLED
    SHIPPED    -> DELIVERED
    DELIVERED, CANCELLED: terminal

ORDER_TRANSITIONS is the only place legality is decided. Both the admin
status update and the customer cancel go through transition().

Authorization:
- ADMIN may make any legal move
- The owning customer may only move to CANCELLED
- Everyone else is Forbidden (checked before legality)

Every successful transition appends an OrderStatusHistory row. A rejected
transition leaves status and history untouched.
"""

from __future__ import annotations

from flask import current_app

from ..errors import IllegalTransition, NotFound, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, OrderStatusHistory, Product
from ..permissions import Action
from ..time_utils import utcnow
from ..validation import require_address, require_items, require_positive_int
from . import access_policy, notification_service, sequence_service
from .concurrency import lock_for_update, run_with_retry
from .sequence_service import DocumentType


PENDING = "PENDING"
CONFIRMED = "CONFIRMED"
PROCESSING = "PROCESSING"
SHIPPED = "SHIPPED"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"

ORDER_STATUSES = (PENDING, CONFIRMED, PROCESSING, SHIPPED, DELIVERED, CANCELLED)

ORDER_TRANSITIONS = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {PROCESSING, CANCELLED},
    PROCESSING: {SHIPPED, CANCELLED},
    SHIPPED: {DELIVERED},
    DELIVERED: set(),
    CANCELLED: set(),
}

ORDER_TYPE_DIRECT = "DIRECT"
ORDER_TYPE_RFQ = "RFQ"


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ORDER_TRANSITIONS.get(from_status, set())


def parse_status(value) -> str:
    status = str(value or "").strip().upper()
    if status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid order status '{value}'",
            errors={"status": "must be one of " + ", ".join(ORDER_STATUSES)},
        )
    return status


def _append_history(order: Order, status: str, actor_id: int | None, note: str | None) -> OrderStatusHistory:
    entry = OrderStatusHistory(
        status=status,
        actor_user_id=actor_id,
        note=note,
        occurred_at=utcnow(),
    )
    order.status_history.append(entry)
    return entry


def build_order(
    *,
    customer_id: int,
    actor_id: int,
    lines: list[tuple[Product, int, int]],
    shipping_address: dict,
    billing_address: dict,
    notes: str | None = None,
    order_type: str = ORDER_TYPE_DIRECT,
    quote_id: int | None = None,
) -> Order:
    """
    Mint a number and stage a PENDING order in the current unit of work.

    lines: (product, quantity, unit_price_paise) in display order. The
    caller commits (and must run under run_with_retry).
    """
    order_number = sequence_service.allocate(DocumentType.ORDER)

    order = Order(
        order_number=order_number,
        customer_id=customer_id,
        status=PENDING,
        order_type=order_type,
        quote_id=quote_id,
        shipping_address=shipping_address,
        billing_address=billing_address,
        notes=notes,
    )
    for position, (product, quantity, unit_price) in enumerate(lines):
        order.items.append(OrderItem(
            position=position,
            product_id=product.id,
            quantity=quantity,
            unit_price_paise=unit_price,
            line_total_paise=quantity * unit_price,
        ))
    order.total_amount_paise = order.recompute_total()
    _append_history(order, PENDING, actor_id, "Order placed" if order_type == ORDER_TYPE_DIRECT else "Converted from quote")

    db.session.add(order)
    db.session.flush()
    notification_service.notify_new_order(order)
    return order


def _checkout_lines(customer, items: list[dict]) -> list[tuple[Product, int, int]]:
    lines = []
    for index, item in enumerate(items):
        field = f"items[{index}]"
        product_id = require_positive_int(item.get("product_id"), f"{field}.product_id")
        quantity = require_positive_int(item.get("quantity"), f"{field}.quantity")

        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise ValidationError(f"Product {product_id} is not available", errors={f"{field}.product_id": "not available"})
        if product.is_price_on_request:
            raise ValidationError(
                f"{product.name} is price on request; submit a quote request instead",
                errors={f"{field}.product_id": "price on request"},
            )
        if quantity < product.moq:
            raise ValidationError(
                f"Minimum order quantity for {product.name} is {product.moq}",
                errors={f"{field}.quantity": f"must be at least {product.moq}"},
            )

        unit_price = access_policy.visible_price_paise(customer.role, product)
        if unit_price is None:
            raise ValidationError(f"{product.name} has no price", errors={f"{field}.product_id": "no price"})
        lines.append((product, quantity, unit_price))
    return lines


def create_order(customer, items, shipping_address, billing_address, notes: str | None = None) -> Order:
    """
    Checkout: create a PENDING order for `customer` with a fresh ORD number.

    Unit prices are the customer's price tier at this moment. The number
    and the order are committed together or not at all.
    """
    items = require_items(items)
    shipping_address = require_address(shipping_address, "shipping_address")
    billing_address = require_address(billing_address, "billing_address")
    customer_id = customer.id

    def _op() -> Order:
        lines = _checkout_lines(customer, items)
        order = build_order(
            customer_id=customer_id,
            actor_id=customer_id,
            lines=lines,
            shipping_address=shipping_address,
            billing_address=billing_address,
            notes=notes,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s created for customer %s", order.order_number, customer_id)
    return order


def _load_order(order_id: int, *, for_update: bool = False) -> Order:
    q = db.session.query(Order).filter(Order.id == order_id)
    if for_update:
        q = lock_for_update(q)
    order = q.first()
    if order is None:
        raise NotFound("Order not found")
    return order


def transition(order_id: int, target_status, actor, note: str | None = None, admin_notes: str | None = None) -> Order:
    """
    Move an order to target_status.

    Access is checked before the requested status is parsed, so a caller
    who may not touch the order gets Forbidden whatever they send.

    Raises:
        NotFound: no such order
        Forbidden: actor may not make this move on this order
        ValidationError: target_status is not an order status
        IllegalTransition: target is not a legal successor of the current status
    """
    requested = str(target_status or "").strip().upper()
    action = Action.CANCEL if requested == CANCELLED else Action.UPDATE_STATUS
    principal = access_policy.as_principal(actor)

    def _op() -> Order:
        order = _load_order(order_id, for_update=True)
        access_policy.require_access(principal, order, action)
        target = parse_status(requested)

        current = order.status
        if not can_transition(current, target):
            raise IllegalTransition(
                f"Cannot move order {order.order_number} from {current} to {target}",
                errors={"status": f"allowed from {current}: " + (", ".join(sorted(ORDER_TRANSITIONS[current])) or "none")},
            )

        order.status = target
        if admin_notes is not None and principal.is_admin:
            order.admin_notes = admin_notes
        _append_history(order, target, principal.id, note)
        notification_service.notify_order_status(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s moved to %s by user %s", order.order_number, order.status, principal.id)
    return order


def cancel_order(order_id: int, actor, reason: str | None = None) -> Order:
    return transition(order_id, CANCELLED, actor, note=reason or "Cancelled")


def get_order(order_id: int, actor) -> Order:
    order = _load_order(order_id)
    access_policy.require_access(actor, order, Action.READ)
    return order


def order_history(order_id: int, actor) -> list[OrderStatusHistory]:
    return list(get_order(order_id, actor).status_history)


def list_orders(actor, *, status: str | None = None, page: int = 1, limit: int = 20) -> tuple[list[Order], int]:
    """Admins see every order; everyone else only their own."""
    principal = access_policy.as_principal(actor)
    q = db.session.query(Order)
    if not principal.is_admin:
        q = q.filter(Order.customer_id == principal.id)
    if status:
        q = q.filter(Order.status == parse_status(status))
    total = q.count()
    rows = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
