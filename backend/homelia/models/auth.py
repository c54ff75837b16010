from __future__ import annotations

from ..extensions import db
from ..permissions import Role
from ..time_utils import to_utc_z


class User(db.Model):
    """
    Customer, dealer and staff accounts.

    WHY: Every order, quote and status change must be attributable.
    Email is unique across all users and stored lower-cased.
    Role is fixed at registration except by an explicit admin role change.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), nullable=False, index=True)
    phone = db.Column(db.String(32), nullable=True)
    name = db.Column(db.String(128), nullable=False)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, default=Role.RETAIL_CUSTOMER.value, index=True)

    company_name = db.Column(db.String(255), nullable=True)
    gst_number = db.Column(db.String(15), nullable=True)
    # Two-digit GST state code (e.g., "27" for Maharashtra)
    state_code = db.Column(db.String(2), nullable=True)

    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # SHA-256 of the current refresh token; rotated on refresh, cleared on logout
    refresh_token_hash = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def role_enum(self) -> Role:
        return Role.parse(self.role)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "phone": self.phone,
            "name": self.name,
            "role": self.role,
            "company_name": self.company_name,
            "gst_number": self.gst_number,
            "state_code": self.state_code,
            "is_verified": self.is_verified,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }
