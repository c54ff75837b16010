from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Notification(db.Model):
    """
    In-app notification.

    Addressed either to one user (recipient_id) or to every user holding a
    role (recipient_role, e.g. all ADMINs). Read state is per row, so
    role-wide notifications are marked read once for the whole role.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    data = db.Column(db.JSON, nullable=True)

    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    recipient_role = db.Column(db.String(32), nullable=True, index=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "recipient_id": self.recipient_id,
            "recipient_role": self.recipient_role,
            "is_read": self.is_read,
            "read_at": to_utc_z(self.read_at) if self.read_at else None,
            "created_at": to_utc_z(self.created_at),
        }
