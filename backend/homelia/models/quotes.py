from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Quote(db.Model):
    """
    Request for quote (RFQ).

    LIFECYCLE (see services/quote_service.QUOTE_TRANSITIONS):
    1. REQUESTED: Customer submitted quantities, no prices yet
    2. QUOTED: Admin priced every line
    3. APPROVED / REJECTED: Terminal decision
    4. EXPIRED: Terminal, QUOTED past valid_until

    INVARIANTS:
    - quoted_price_paise is null on every item while REQUESTED
    - total_amount_paise is null until every item is priced
    - APPROVED/REJECTED quotes are immutable except for conversion linkage
    - converted_order_id is a weak link (no ownership)
    """
    __tablename__ = "quotes"
    __table_args__ = (
        db.UniqueConstraint("quote_number", name="uq_quotes_quote_number"),
        db.Index("ix_quotes_customer_status_created", "customer_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "RFQ-2025-000042")
    quote_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="REQUESTED", index=True)

    notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    total_amount_paise = db.Column(db.Integer, nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    priced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    priced_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    converted_order_id = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("User", foreign_keys=[customer_id], backref=db.backref("quotes", lazy=True))
    items = db.relationship(
        "QuoteItem",
        backref="quote",
        lazy=True,
        order_by="QuoteItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quote_number": self.quote_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "notes": self.notes,
            "admin_notes": self.admin_notes,
            "rejection_reason": self.rejection_reason,
            "total_amount_paise": self.total_amount_paise,
            "valid_until": to_utc_z(self.valid_until) if self.valid_until else None,
            "created_at": to_utc_z(self.created_at),
            "priced_at": to_utc_z(self.priced_at) if self.priced_at else None,
            "decided_at": to_utc_z(self.decided_at) if self.decided_at else None,
            "converted_at": to_utc_z(self.converted_at) if self.converted_at else None,
            "priced_by_user_id": self.priced_by_user_id,
            "decided_by_user_id": self.decided_by_user_id,
            "converted_order_id": self.converted_order_id,
            "version_id": self.version_id,
            "items": [item.to_dict() for item in self.items],
        }


class QuoteItem(db.Model):
    """Requested line on an RFQ; quoted_price_paise stays null until priced."""
    __tablename__ = "quote_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    requested_qty = db.Column(db.Integer, nullable=False)
    quoted_price_paise = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "requested_qty": self.requested_qty,
            "quoted_price_paise": self.quoted_price_paise,
            "notes": self.notes,
        }
