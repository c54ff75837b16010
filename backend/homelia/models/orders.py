from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order.

    LIFECYCLE (see services/order_service.ORDER_TRANSITIONS):
    1. PENDING: Created at checkout (or quote conversion)
    2. CONFIRMED: Admin accepted the order
    3. PROCESSING: Being cut/packed
    4. SHIPPED: Handed to transporter
    5. DELIVERED: Terminal
    6. CANCELLED: Terminal, reachable from PENDING/CONFIRMED/PROCESSING

    INVARIANTS:
    - items is non-empty
    - total_amount_paise == sum(item.line_total_paise)
    - order_number is immutable once assigned
    - never hard-deleted; cancellation is a status
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_customer_status_created", "customer_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "ORD-2025-000123")
    order_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    # DIRECT (checkout) or RFQ (converted from an approved quote)
    order_type = db.Column(db.String(16), nullable=False, default="DIRECT")
    # Weak back-reference to the originating quote
    quote_id = db.Column(db.Integer, nullable=True, index=True)

    shipping_address = db.Column(db.JSON, nullable=False)
    billing_address = db.Column(db.JSON, nullable=False)

    total_amount_paise = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )
    status_history = db.relationship(
        "OrderStatusHistory",
        backref="order",
        lazy=True,
        order_by="OrderStatusHistory.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def recompute_total(self) -> int:
        return sum(item.quantity * item.unit_price_paise for item in self.items)

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "order_type": self.order_type,
            "quote_id": self.quote_id,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "total_amount_paise": self.total_amount_paise,
            "notes": self.notes,
            "admin_notes": self.admin_notes,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Line on an order.

    unit_price_paise is a snapshot of the caller's price tier (or the quoted
    price) at order time; later catalog price changes never touch it.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_paise = db.Column(db.Integer, nullable=False)
    line_total_paise = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_paise": self.unit_price_paise,
            "line_total_paise": self.line_total_paise,
        }


class OrderStatusHistory(db.Model):
    """
    Append-only log of order status changes.

    IMMUTABLE: One row per successful transition (plus the initial PENDING).
    """
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    note = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
