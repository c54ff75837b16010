# Overview: Service-layer operations for GST invoices; encapsulates business logic and database work.

"""
GST Invoices

Laminates (HSN 4823) carry a flat 18% GST:
- Intra-state (seller state == buyer state): CGST + SGST, equal halves
- Inter-state: IGST for the full amount

All arithmetic is in integer paise using Decimal with ROUND_HALF_UP.
Invoice numbers come from the sequence allocator bucketed by Indian
financial year: INV/2025-26/000001 for tax invoices, PRO/2025-26/000001
for proforma invoices issued against priced quotes. Proformas are estimates:
they never count towards GST totals or the GST report.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, IllegalTransition, NotFound, ValidationError
from ..extensions import db
from ..models import Invoice, Order, Quote
from ..permissions import Action
from ..time_utils import financial_year_label, financial_year_start, to_utc_z, utcnow
from ..validation import GSTIN_PATTERN, coerce_datetime
from . import access_policy, quote_service, sequence_service
from .concurrency import lock_for_update, run_with_retry
from .sequence_service import DocumentType


INTRA_STATE = "INTRA_STATE"
INTER_STATE = "INTER_STATE"

TAX_INVOICE = "TAX_INVOICE"
PROFORMA = "PROFORMA"
INVOICE_TYPES = (TAX_INVOICE, PROFORMA)


@dataclass(frozen=True)
class GSTBreakdown:
    subtotal_paise: int
    cgst_paise: int
    sgst_paise: int
    igst_paise: int
    total_tax_paise: int
    total_amount_paise: int
    gst_type: str


def _round_paise(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_gst(subtotal_paise: int, seller_state_code: str, buyer_state_code: str, rate_percent=18) -> GSTBreakdown:
    tax = Decimal(subtotal_paise) * Decimal(rate_percent) / Decimal(100)

    if seller_state_code == buyer_state_code:
        half = _round_paise(tax / 2)
        return GSTBreakdown(
            subtotal_paise=subtotal_paise,
            cgst_paise=half,
            sgst_paise=half,
            igst_paise=0,
            total_tax_paise=half * 2,
            total_amount_paise=subtotal_paise + half * 2,
            gst_type=INTRA_STATE,
        )

    igst = _round_paise(tax)
    return GSTBreakdown(
        subtotal_paise=subtotal_paise,
        cgst_paise=0,
        sgst_paise=0,
        igst_paise=igst,
        total_tax_paise=igst,
        total_amount_paise=subtotal_paise + igst,
        gst_type=INTER_STATE,
    )


def resolve_buyer_state(user, billing_address: dict | None, seller_state_code: str) -> str:
    """user.state_code, then GSTIN digits, then billing stateCode, then seller state."""
    if user is not None and user.state_code:
        return user.state_code
    gstin = (user.gst_number or "").upper() if user is not None else ""
    if gstin and re.match(GSTIN_PATTERN, gstin):
        return gstin[:2]
    if isinstance(billing_address, dict):
        code = str(billing_address.get("stateCode") or billing_address.get("state_code") or "").strip()
        if re.fullmatch(r"\d{2}", code):
            return code
    return seller_state_code


def _issue(invoice_type: str, customer, billing_address, subtotal_paise: int, issued_by: int, **links) -> Invoice:
    """Freeze GST amounts and allocate the number inside the caller's unit of work."""
    now = utcnow()
    seller_state = current_app.config["SELLER_STATE_CODE"]
    buyer_state = resolve_buyer_state(customer, billing_address, seller_state)
    gst = calculate_gst(
        subtotal_paise,
        seller_state,
        buyer_state,
        current_app.config.get("GST_RATE_PERCENT", 18),
    )
    doc_type = DocumentType.PROFORMA if invoice_type == PROFORMA else DocumentType.INVOICE

    invoice = Invoice(
        invoice_number=sequence_service.allocate(doc_type, at_date=now),
        invoice_type=invoice_type,
        financial_year=financial_year_label(financial_year_start(now)),
        customer_id=customer.id,
        seller_state_code=seller_state,
        buyer_state_code=buyer_state,
        buyer_gstin=customer.gst_number,
        gst_type=gst.gst_type,
        subtotal_paise=gst.subtotal_paise,
        cgst_paise=gst.cgst_paise,
        sgst_paise=gst.sgst_paise,
        igst_paise=gst.igst_paise,
        total_tax_paise=gst.total_tax_paise,
        total_amount_paise=gst.total_amount_paise,
        issued_at=now,
        issued_by_user_id=issued_by,
        **links,
    )
    db.session.add(invoice)
    return invoice


def generate_invoice(order_id: int, actor) -> Invoice:
    """
    Admin issues the (single) tax invoice for a non-cancelled order.

    Raises:
        NotFound: no such order
        Forbidden: actor is not an admin
        IllegalTransition: order is CANCELLED
        ConflictError: order already invoiced
    """
    principal = access_policy.as_principal(actor)

    def _op() -> Invoice:
        order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
        if order is None:
            raise NotFound("Order not found")
        access_policy.require_access(principal, order, Action.GENERATE_INVOICE)
        if order.status == "CANCELLED":
            raise IllegalTransition(f"Order {order.order_number} is cancelled and cannot be invoiced")
        existing = db.session.query(Invoice).filter_by(order_id=order.id).first()
        if existing is not None:
            raise ConflictError(
                f"Order {order.order_number} already has invoice {existing.invoice_number}",
                errors={"invoice_number": existing.invoice_number},
            )

        invoice = _issue(
            TAX_INVOICE,
            order.customer,
            order.billing_address,
            order.total_amount_paise,
            principal.id,
            order_id=order.id,
        )
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info("Invoice %s issued for order %s", invoice.invoice_number, order_id)
    return invoice


def generate_proforma_invoice(quote_id: int, actor) -> Invoice:
    """
    Admin issues the proforma invoice for a priced quote (one per quote).

    Only QUOTED or APPROVED quotes still inside valid_until qualify. The
    quote itself is left untouched.

    Raises:
        NotFound: no such quote
        Forbidden: actor is not an admin
        IllegalTransition: quote unpriced, rejected or expired
        ConflictError: quote already has a proforma
    """
    principal = access_policy.as_principal(actor)

    def _op() -> Invoice:
        quote = lock_for_update(db.session.query(Quote).filter(Quote.id == quote_id)).first()
        if quote is None:
            raise NotFound("Quote not found")
        access_policy.require_access(principal, quote, Action.GENERATE_INVOICE)
        if quote.total_amount_paise is None or quote.status not in (quote_service.QUOTED, quote_service.APPROVED):
            raise IllegalTransition(
                f"Quote {quote.quote_number} is {quote.status}; only priced, open quotes get a proforma",
                errors={"status": quote.status},
            )
        if quote_service.is_expired(quote):
            raise IllegalTransition(
                f"Quote {quote.quote_number} expired and can no longer be invoiced",
                errors={"valid_until": "passed"},
            )
        existing = db.session.query(Invoice).filter_by(quote_id=quote.id).first()
        if existing is not None:
            raise ConflictError(
                f"Quote {quote.quote_number} already has proforma {existing.invoice_number}",
                errors={"invoice_number": existing.invoice_number},
            )

        invoice = _issue(
            PROFORMA,
            quote.customer,
            None,
            quote.total_amount_paise,
            principal.id,
            quote_id=quote.id,
        )
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info("Proforma %s issued for quote %s", invoice.invoice_number, quote_id)
    return invoice


def get_invoice(invoice_id: int, actor) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound("Invoice not found")
    access_policy.require_access(actor, invoice, Action.READ)
    return invoice


def get_invoice_for_order(order_id: int, actor) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(order_id=order_id).first()
    if invoice is None:
        raise NotFound("Invoice not found for this order")
    access_policy.require_access(actor, invoice, Action.READ)
    return invoice


def _parse_invoice_type(value) -> str:
    invoice_type = str(value).strip().upper()
    if invoice_type not in INVOICE_TYPES:
        raise ValidationError(
            f"Invalid invoice type '{value}'",
            errors={"invoice_type": "must be one of " + ", ".join(INVOICE_TYPES)},
        )
    return invoice_type


def list_invoices(
    actor,
    *,
    own_only: bool = False,
    financial_year: str | None = None,
    invoice_type: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Invoice], int]:
    """Admins see every invoice (unless own_only); customers their own."""
    principal = access_policy.as_principal(actor)
    q = db.session.query(Invoice)
    if own_only or not principal.is_admin:
        q = q.filter(Invoice.customer_id == principal.id)
    if financial_year:
        q = q.filter(Invoice.financial_year == financial_year)
    if invoice_type:
        q = q.filter(Invoice.invoice_type == _parse_invoice_type(invoice_type))
    total = q.count()
    rows = (
        q.order_by(Invoice.issued_at.desc(), Invoice.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def _tax_totals(q) -> dict:
    count, subtotal, cgst, sgst, igst, tax, total = q.with_entities(
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.subtotal_paise), 0),
        func.coalesce(func.sum(Invoice.cgst_paise), 0),
        func.coalesce(func.sum(Invoice.sgst_paise), 0),
        func.coalesce(func.sum(Invoice.igst_paise), 0),
        func.coalesce(func.sum(Invoice.total_tax_paise), 0),
        func.coalesce(func.sum(Invoice.total_amount_paise), 0),
    ).one()
    return {
        "invoice_count": count,
        "subtotal_paise": int(subtotal),
        "cgst_paise": int(cgst),
        "sgst_paise": int(sgst),
        "igst_paise": int(igst),
        "total_tax_paise": int(tax),
        "total_amount_paise": int(total),
    }


def invoice_totals(financial_year: str | None = None) -> dict:
    """GST collected on tax invoices, optionally for one financial year."""
    q = db.session.query(Invoice).filter(Invoice.invoice_type == TAX_INVOICE)
    if financial_year:
        q = q.filter(Invoice.financial_year == financial_year)
    return _tax_totals(q)


def _report_bound(value, field: str, *, end_of_day: bool = False):
    if value is None or value == "":
        raise ValidationError(f"{field} is required", errors={field: "required"})
    bound = coerce_datetime(value, field)
    # A bare date as the end bound covers that whole day
    if end_of_day and isinstance(value, str) and len(value.strip()) == 10:
        bound = bound + timedelta(days=1) - timedelta(microseconds=1)
    return bound


def gst_report(start_date, end_date) -> dict:
    """
    Tax invoices issued between start_date and end_date (inclusive).

    Returns the period, summary totals and one row per invoice in issue
    order. Proformas are excluded.
    """
    start = _report_bound(start_date, "start_date")
    end = _report_bound(end_date, "end_date", end_of_day=True)
    if start > end:
        raise ValidationError("start_date must not be after end_date", errors={"start_date": "after end_date"})

    q = db.session.query(Invoice).filter(
        Invoice.invoice_type == TAX_INVOICE,
        Invoice.issued_at >= start,
        Invoice.issued_at <= end,
    )
    invoices = q.order_by(Invoice.issued_at.asc(), Invoice.id.asc()).all()

    return {
        "period": {"start_date": to_utc_z(start), "end_date": to_utc_z(end)},
        "summary": _tax_totals(q),
        "invoices": [
            {
                "invoice_number": inv.invoice_number,
                "issued_at": to_utc_z(inv.issued_at),
                "buyer_name": inv.customer.company_name or inv.customer.name,
                "buyer_gstin": inv.buyer_gstin,
                "gst_type": inv.gst_type,
                "subtotal_paise": inv.subtotal_paise,
                "cgst_paise": inv.cgst_paise,
                "sgst_paise": inv.sgst_paise,
                "igst_paise": inv.igst_paise,
                "total_amount_paise": inv.total_amount_paise,
            }
            for inv in invoices
        ],
    }
