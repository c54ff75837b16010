# Overview: Service-layer operations for quotes (RFQ); encapsulates business logic and database work.

"""
Quote (RFQ) Lifecycle Service

State machine:
    REQUESTED -> QUOTED | REJECTED (admin only, without pricing)
    QUOTED    -> APPROVED | REJECTED | EXPIRED (valid_until passed)
    APPROVED, REJECTED, EXPIRED: terminal

Conversion is not a transition: convert_to_order() creates a new Order from
an APPROVED quote and records converted_order_id on the quote. The quote
stays APPROVED; a second conversion raises AlreadyConverted.

INVARIANTS:
- While REQUESTED every quoted_price_paise and total_amount_paise is null
- total_amount_paise is set only when every item carries a price
- Terminal quotes never change again (except conversion linkage)
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import AlreadyConverted, IllegalTransition, NotFound, ValidationError
from ..extensions import db
from ..models import Product, Quote, QuoteItem
from ..permissions import Action
from ..time_utils import utcnow
from ..validation import (
    coerce_datetime,
    coerce_int,
    require_address,
    require_items,
    require_positive_int,
    require_price_paise,
    require_text,
)
from . import access_policy, notification_service, order_service, sequence_service
from .concurrency import lock_for_update, run_with_retry
from .sequence_service import DocumentType


REQUESTED = "REQUESTED"
QUOTED = "QUOTED"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
EXPIRED = "EXPIRED"

QUOTE_STATUSES = (REQUESTED, QUOTED, APPROVED, REJECTED, EXPIRED)

QUOTE_TRANSITIONS = {
    REQUESTED: {QUOTED, REJECTED},
    QUOTED: {APPROVED, REJECTED, EXPIRED},
    APPROVED: set(),
    REJECTED: set(),
    EXPIRED: set(),
}

APPROVE = "APPROVE"
REJECT = "REJECT"


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in QUOTE_TRANSITIONS.get(from_status, set())


def _require_transition(quote: Quote, target: str) -> None:
    if not can_transition(quote.status, target):
        raise IllegalTransition(f"Cannot move quote {quote.quote_number} from {quote.status} to {target}")


def _load_quote(quote_id: int, *, for_update: bool = False) -> Quote:
    q = db.session.query(Quote).filter(Quote.id == quote_id)
    if for_update:
        q = lock_for_update(q)
    quote = q.first()
    if quote is None:
        raise NotFound("Quote not found")
    return quote


def is_expired(quote: Quote, now=None) -> bool:
    return quote.valid_until is not None and quote.valid_until < (now or utcnow())


def create_quote(customer, items, notes: str | None = None) -> Quote:
    """Submit an RFQ; every line starts unpriced."""
    items = require_items(items)
    customer_id = customer.id

    def _op() -> Quote:
        quote_items = []
        for index, item in enumerate(items):
            field = f"items[{index}]"
            product_id = require_positive_int(item.get("product_id"), f"{field}.product_id")
            qty = require_positive_int(item.get("quantity", item.get("requested_qty")), f"{field}.quantity")
            product = db.session.get(Product, product_id)
            if product is None or not product.is_active:
                raise ValidationError(f"Product {product_id} is not available", errors={f"{field}.product_id": "not available"})
            quote_items.append(QuoteItem(
                position=index,
                product_id=product.id,
                requested_qty=qty,
                notes=item.get("notes"),
            ))

        quote = Quote(
            quote_number=sequence_service.allocate(DocumentType.QUOTE),
            customer_id=customer_id,
            status=REQUESTED,
            notes=notes,
            items=quote_items,
        )
        db.session.add(quote)
        db.session.flush()
        notification_service.notify_new_quote(quote)
        db.session.commit()
        return quote

    quote = run_with_retry(_op)
    current_app.logger.info("Quote %s submitted by customer %s", quote.quote_number, customer_id)
    return quote


def _normalize_prices(quote: Quote, line_item_prices) -> dict[int, int]:
    """
    Accepts {item_id: price_paise} or [{"item_id": .., "quoted_price_paise": ..}].
    Returns item_id -> price for every item on the quote.
    """
    if isinstance(line_item_prices, dict):
        pairs = list(line_item_prices.items())
    elif isinstance(line_item_prices, list):
        pairs = []
        for index, entry in enumerate(line_item_prices):
            if not isinstance(entry, dict):
                raise ValidationError(f"items[{index}] must be an object", errors={f"items[{index}]": "must be an object"})
            pairs.append((entry.get("item_id"), entry.get("quoted_price_paise")))
    else:
        raise ValidationError("items must be a list of prices", errors={"items": "required"})

    item_ids = {item.id for item in quote.items}
    prices: dict[int, int] = {}
    for raw_id, raw_price in pairs:
        item_id = coerce_int(raw_id, "item_id")
        if item_id not in item_ids:
            raise ValidationError(f"Item {item_id} is not on this quote", errors={f"items.{item_id}": "not on quote"})
        prices[item_id] = require_price_paise(raw_price, f"items.{item_id}.quoted_price_paise")

    missing = sorted(item_ids - set(prices))
    if missing:
        raise ValidationError(
            "Every item must be priced",
            errors={f"items.{item_id}": "price required" for item_id in missing},
        )
    return prices


def price_quote(quote_id: int, line_item_prices, actor, valid_until=None, admin_notes: str | None = None) -> Quote:
    """
    Admin prices every line: REQUESTED -> QUOTED.

    total_amount_paise = sum(requested_qty * quoted_price_paise). valid_until
    defaults to QUOTE_VALIDITY_DAYS from now and must lie in the future.
    """
    principal = access_policy.as_principal(actor)

    def _op() -> Quote:
        quote = _load_quote(quote_id, for_update=True)
        access_policy.require_access(principal, quote, Action.PRICE)
        _require_transition(quote, QUOTED)

        prices = _normalize_prices(quote, line_item_prices)
        now = utcnow()
        if valid_until is None:
            expires = now + timedelta(days=current_app.config.get("QUOTE_VALIDITY_DAYS", 15))
        else:
            expires = coerce_datetime(valid_until, "valid_until")
            if expires <= now:
                raise ValidationError("valid_until must be in the future", errors={"valid_until": "must be in the future"})

        for item in quote.items:
            item.quoted_price_paise = prices[item.id]
        quote.total_amount_paise = sum(item.requested_qty * item.quoted_price_paise for item in quote.items)
        quote.valid_until = expires
        quote.status = QUOTED
        quote.priced_at = now
        quote.priced_by_user_id = principal.id
        if admin_notes is not None:
            quote.admin_notes = admin_notes
        notification_service.notify_quote_status(quote)
        db.session.commit()
        return quote

    quote = run_with_retry(_op)
    current_app.logger.info("Quote %s priced at %s paise", quote.quote_number, quote.total_amount_paise)
    return quote


def decide(quote_id: int, decision, actor, reason: str | None = None) -> Quote:
    """
    APPROVE (QUOTED only, not past valid_until) or REJECT (reason required).

    REJECT from REQUESTED is the admin's "reject without pricing" path.
    """
    choice = str(decision or "").strip().upper()
    principal = access_policy.as_principal(actor)

    def _op() -> Quote:
        quote = _load_quote(quote_id, for_update=True)
        access_policy.require_access(principal, quote, Action.DECIDE)
        if choice not in (APPROVE, REJECT):
            raise ValidationError("decision must be APPROVE or REJECT", errors={"decision": "must be APPROVE or REJECT"})
        now = utcnow()

        if choice == APPROVE:
            _require_transition(quote, APPROVED)
            if is_expired(quote, now):
                raise IllegalTransition(f"Quote {quote.quote_number} expired and can no longer be approved")
            quote.status = APPROVED
        else:
            _require_transition(quote, REJECTED)
            if quote.status == REQUESTED:
                access_policy.require_admin(principal, "reject_unpriced_quote")
            quote.rejection_reason = require_text(reason, "reason")
            quote.status = REJECTED

        quote.decided_at = now
        quote.decided_by_user_id = principal.id
        notification_service.notify_quote_status(quote)
        db.session.commit()
        return quote

    quote = run_with_retry(_op)
    current_app.logger.info("Quote %s %s by user %s", quote.quote_number, quote.status, principal.id)
    return quote


def approve_quote(quote_id: int, actor) -> Quote:
    return decide(quote_id, APPROVE, actor)


def reject_quote(quote_id: int, actor, reason: str | None) -> Quote:
    return decide(quote_id, REJECT, actor, reason)


def convert_to_order(quote_id: int, actor, shipping_address, billing_address, notes: str | None = None):
    """
    Create an RFQ order from an APPROVED quote.

    Each line is snapshotted at its quoted price and a new ORD number is
    allocated in the same unit of work. The order belongs to the quote's
    customer whoever converts it.

    Raises:
        AlreadyConverted: the quote already produced an order
        IllegalTransition: the quote is not APPROVED, or its valid_until has passed
    """
    principal = access_policy.as_principal(actor)

    def _op():
        quote = _load_quote(quote_id, for_update=True)
        access_policy.require_access(principal, quote, Action.CONVERT)
        shipping = require_address(shipping_address, "shipping_address")
        billing = require_address(billing_address, "billing_address")
        if quote.converted_order_id is not None:
            raise AlreadyConverted(
                f"Quote {quote.quote_number} was already converted",
                errors={"converted_order_id": quote.converted_order_id},
            )
        if quote.status != APPROVED:
            raise IllegalTransition(f"Only APPROVED quotes can be converted (quote is {quote.status})")
        if is_expired(quote):
            raise IllegalTransition(
                f"Quote {quote.quote_number} expired and can no longer be converted",
                errors={"valid_until": "passed"},
            )

        lines = [(item.product, item.requested_qty, item.quoted_price_paise) for item in quote.items]
        order = order_service.build_order(
            customer_id=quote.customer_id,
            actor_id=principal.id,
            lines=lines,
            shipping_address=shipping,
            billing_address=billing,
            notes=notes if notes is not None else quote.notes,
            order_type=order_service.ORDER_TYPE_RFQ,
            quote_id=quote.id,
        )
        quote.converted_order_id = order.id
        quote.converted_at = utcnow()
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Quote %s converted to order %s", quote_id, order.order_number)
    return order


def expire_quotes(now=None) -> list[str]:
    """Move QUOTED quotes whose valid_until has passed to EXPIRED."""
    now = now or utcnow()

    def _op() -> list[str]:
        stale = (
            lock_for_update(
                db.session.query(Quote).filter(
                    Quote.status == QUOTED,
                    Quote.valid_until.isnot(None),
                    Quote.valid_until < now,
                )
            )
            .order_by(Quote.id.asc())
            .all()
        )
        for quote in stale:
            quote.status = EXPIRED
            notification_service.notify_quote_status(quote)
        db.session.commit()
        return [quote.quote_number for quote in stale]

    expired = run_with_retry(_op)
    if expired:
        current_app.logger.info("Expired %d quotes", len(expired))
    return expired


def get_quote(quote_id: int, actor) -> Quote:
    quote = _load_quote(quote_id)
    access_policy.require_access(actor, quote, Action.READ)
    return quote


def list_quotes(actor, *, status: str | None = None, page: int = 1, limit: int = 20) -> tuple[list[Quote], int]:
    principal = access_policy.as_principal(actor)
    q = db.session.query(Quote)
    if not principal.is_admin:
        q = q.filter(Quote.customer_id == principal.id)
    if status:
        status = str(status).strip().upper()
        if status not in QUOTE_STATUSES:
            raise ValidationError(f"Invalid quote status '{status}'", errors={"status": "invalid"})
        q = q.filter(Quote.status == status)
    total = q.count()
    rows = (
        q.order_by(Quote.created_at.desc(), Quote.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
