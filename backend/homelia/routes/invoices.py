# Overview: GST invoice API routes.

from flask import Blueprint, request, g

from ..decorators import require_admin, require_auth
from ..responses import ok, paginated, pagination_params
from ..services import invoice_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
@require_admin
def list_invoices():
    page, limit = pagination_params()
    financial_year = request.args.get("financial_year")
    rows, total = invoice_service.list_invoices(
        g.principal,
        financial_year=financial_year,
        invoice_type=request.args.get("invoice_type"),
        page=page,
        limit=limit,
    )
    return paginated(
        [i.to_dict() for i in rows],
        total,
        page,
        limit,
        summary=invoice_service.invoice_totals(financial_year),
    )


@invoices_bp.get("/gst-report")
@require_auth
@require_admin
def gst_report():
    """Tax invoices issued between start_date and end_date (ISO dates, inclusive)."""
    report = invoice_service.gst_report(request.args.get("start_date"), request.args.get("end_date"))
    return ok(report)


@invoices_bp.get("/my-invoices")
@require_auth
def my_invoices():
    page, limit = pagination_params()
    rows, total = invoice_service.list_invoices(g.principal, own_only=True, page=page, limit=limit)
    return paginated([i.to_dict() for i in rows], total, page, limit)


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice(invoice_id: int):
    return ok(invoice_service.get_invoice(invoice_id, g.principal).to_dict())


@invoices_bp.get("/order/<int:order_id>")
@require_auth
def get_invoice_for_order(order_id: int):
    return ok(invoice_service.get_invoice_for_order(order_id, g.principal).to_dict())


@invoices_bp.post("/generate/<int:order_id>")
@require_auth
@require_admin
def generate_invoice(order_id: int):
    """
    Returns:
        201: Invoice issued
        409: Order cancelled or already invoiced
    """
    invoice = invoice_service.generate_invoice(order_id, g.principal)
    return ok(invoice.to_dict(), message=f"Invoice {invoice.invoice_number} generated", status=201)


@invoices_bp.post("/proforma/<int:quote_id>")
@require_auth
@require_admin
def generate_proforma_invoice(quote_id: int):
    """
    Returns:
        201: Proforma issued
        409: Quote unpriced, closed, expired or already has a proforma
    """
    invoice = invoice_service.generate_proforma_invoice(quote_id, g.principal)
    return ok(invoice.to_dict(), message=f"Proforma invoice {invoice.invoice_number} generated", status=201)
