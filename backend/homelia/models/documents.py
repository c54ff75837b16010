from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SequenceCounter(db.Model):
    """
    Atomic per-type, per-year document sequences.

    WHY: Prevent race conditions when generating document numbers
    (orders, quotes, samples, invoices).

    INVARIANTS:
    - At most one row per (document_type, year)
    - last_number only ever increases, by exactly 1 per allocation
    - Rows are created lazily (or pre-seeded) and never deleted

    For INVOICE rows, `year` is the starting year of the Indian financial
    year (April-March).
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("document_type", "year", name="uq_sequence_counters_type_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(16), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    prefix = db.Column(db.String(16), nullable=False)
    last_number = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "year": self.year,
            "prefix": self.prefix,
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class Invoice(db.Model):
    """
    GST invoice: a TAX_INVOICE for an order (one per order) or a PROFORMA
    for a priced quote (one per quote).

    Flat 18% GST: intra-state supplies split into CGST + SGST halves,
    inter-state supplies carry IGST. Amounts are frozen at generation time.
    Proformas are estimates and never count towards GST reporting.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        db.UniqueConstraint("order_id", name="uq_invoices_order"),
        db.UniqueConstraint("quote_id", name="uq_invoices_quote"),
        db.Index("ix_invoices_type_issued", "invoice_type", "issued_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g., "INV/2025-26/000001" or "PRO/2025-26/000001"
    invoice_number = db.Column(db.String(32), nullable=False)
    invoice_type = db.Column(db.String(16), nullable=False, default="TAX_INVOICE")  # TAX_INVOICE, PROFORMA
    financial_year = db.Column(db.String(7), nullable=False, index=True)

    # Exactly one of order_id (tax invoice) / quote_id (proforma) is set
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    seller_state_code = db.Column(db.String(2), nullable=False)
    buyer_state_code = db.Column(db.String(2), nullable=False)
    buyer_gstin = db.Column(db.String(15), nullable=True)
    gst_type = db.Column(db.String(16), nullable=False)  # INTRA_STATE, INTER_STATE

    subtotal_paise = db.Column(db.Integer, nullable=False)
    cgst_paise = db.Column(db.Integer, nullable=False, default=0)
    sgst_paise = db.Column(db.Integer, nullable=False, default=0)
    igst_paise = db.Column(db.Integer, nullable=False, default=0)
    total_tax_paise = db.Column(db.Integer, nullable=False)
    total_amount_paise = db.Column(db.Integer, nullable=False)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    issued_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False, lazy=True))
    quote = db.relationship("Quote", backref=db.backref("proforma", uselist=False, lazy=True))
    customer = db.relationship("User", foreign_keys=[customer_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "invoice_type": self.invoice_type,
            "financial_year": self.financial_year,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "quote_id": self.quote_id,
            "quote_number": self.quote.quote_number if self.quote else None,
            "customer_id": self.customer_id,
            "seller_state_code": self.seller_state_code,
            "buyer_state_code": self.buyer_state_code,
            "buyer_gstin": self.buyer_gstin,
            "gst_type": self.gst_type,
            "subtotal_paise": self.subtotal_paise,
            "cgst_paise": self.cgst_paise,
            "sgst_paise": self.sgst_paise,
            "igst_paise": self.igst_paise,
            "total_tax_paise": self.total_tax_paise,
            "total_amount_paise": self.total_amount_paise,
            "issued_at": to_utc_z(self.issued_at),
            "issued_by_user_id": self.issued_by_user_id,
        }
