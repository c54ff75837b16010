from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SampleRequest(db.Model):
    """
    Physical laminate sample order.

    LIFECYCLE:
    1. REQUESTED: Submitted from the sample page (guest or signed in)
    2. DISPATCHED: Samples couriered
    3. DELIVERED: Terminal
    4. CANCELLED: Terminal, only before dispatch

    Samples are free; there are no prices on this document.
    """
    __tablename__ = "sample_requests"
    __table_args__ = (
        db.UniqueConstraint("request_number", name="uq_sample_requests_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "SMP-2025-000007")
    request_number = db.Column(db.String(32), nullable=False)

    # Null for guest requests
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    company_name = db.Column(db.String(255), nullable=True)
    address = db.Column(db.JSON, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="REQUESTED", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "SampleRequestItem",
        backref="sample_request",
        lazy=True,
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_samples(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_number": self.request_number,
            "customer_id": self.customer_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "company_name": self.company_name,
            "address": self.address,
            "status": self.status,
            "total_samples": self.total_samples,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class SampleRequestItem(db.Model):
    __tablename__ = "sample_request_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sample_request_id = db.Column(db.Integer, db.ForeignKey("sample_requests.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
        }
