# Overview: Service-layer operations for the security audit trail.

from __future__ import annotations

from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    *,
    commit: bool = False,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    WHY: Immutable audit log for security monitoring.
    Every access denial, login attempt and role/status change is logged.

    event_type examples:
    - ACCESS_DENIED
    - LOGIN_FAILED
    - LOGIN_SUCCEEDED
    - USER_REGISTERED
    - ROLE_CHANGED
    - USER_STATUS_CHANGED

    commit=True writes the event immediately. Only use it when nothing
    else is pending in the session (denials are decided before any write).
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    if commit:
        db.session.commit()
    return event


def list_security_events(
    *,
    user_id: int | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[SecurityEvent]:
    q = db.session.query(SecurityEvent)
    if user_id is not None:
        q = q.filter_by(user_id=user_id)
    if event_type:
        q = q.filter_by(event_type=event_type)
    return q.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()
