# Overview: System endpoints (health check).

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..responses import fail, ok
from ..time_utils import to_utc_z, utcnow


system_bp = Blueprint("system", __name__, url_prefix="/api")


@system_bp.get("/health")
def health():
    """
    Liveness + database reachability.

    Returns:
        200: {"status": "ok", "database": "ok"}
        503: database unreachable
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Health check: database unreachable")
        return fail("Database unreachable", 503, code="STORAGE_UNAVAILABLE")

    return ok({"status": "ok", "database": "ok", "timestamp": to_utc_z(utcnow())})
