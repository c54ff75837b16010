from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Laminate sheet in the catalog.

    Three price lists are kept per product (list/retail, B2B, dealer).
    Which one a caller sees is decided by services/access_policy.visible_price_paise;
    to_dict never exposes the other tiers.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_brand_category", "brand", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    brand = db.Column(db.String(64), nullable=False, index=True)
    category = db.Column(db.String(64), nullable=False, index=True)
    collection = db.Column(db.String(128), nullable=True, index=True)
    finish = db.Column(db.String(64), nullable=True)
    thickness = db.Column(db.String(32), nullable=True)
    sheet_size = db.Column(db.String(32), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Prices in paise (₹1 = 100 paise)
    price_paise = db.Column(db.Integer, nullable=True)
    b2b_price_paise = db.Column(db.Integer, nullable=True)
    dealer_price_paise = db.Column(db.Integer, nullable=True)
    is_price_on_request = db.Column(db.Boolean, nullable=False, default=False)

    # Minimum order quantity (sheets)
    moq = db.Column(db.Integer, nullable=False, default=1)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    is_bestseller = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    def to_dict(self, *, visible_price_paise: int | None = None) -> dict:
        return {
            "id": self.id,
            "product_code": self.product_code,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "collection": self.collection,
            "finish": self.finish,
            "thickness": self.thickness,
            "sheet_size": self.sheet_size,
            "description": self.description,
            "price_paise": None if self.is_price_on_request else visible_price_paise,
            "is_price_on_request": self.is_price_on_request,
            "moq": self.moq,
            "stock_quantity": self.stock_quantity,
            "in_stock": self.stock_quantity > 0,
            "is_active": self.is_active,
            "is_featured": self.is_featured,
            "is_bestseller": self.is_bestseller,
            "created_at": to_utc_z(self.created_at),
        }

    def to_admin_dict(self) -> dict:
        data = self.to_dict(visible_price_paise=self.price_paise)
        data.update({
            "price_paise": self.price_paise,
            "b2b_price_paise": self.b2b_price_paise,
            "dealer_price_paise": self.dealer_price_paise,
        })
        return data
