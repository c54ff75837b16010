# Overview: Role-scoped access decisions for orders, quotes, samples and invoices.

"""
Single authority for "may this principal do this to that resource?".

Rules:
- ADMIN: every action on every resource
- DEALER / B2B_CUSTOMER / RETAIL_CUSTOMER: only resources whose
  customer_id equals their own id, and only the owner actions
  (read, create, cancel, decide, convert)

Denials raise Forbidden (never NotFound) and are written to the
security_events audit trail.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, has_request_context, request

from ..errors import Forbidden
from ..permissions import OWNER_ACTIONS, ROLE_PRICE_TIER, PriceTier, Role
from . import security_service


@dataclass(frozen=True)
class Principal:
    id: int
    role: Role

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(id=user.id, role=Role.parse(user.role))

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def as_principal(actor) -> Principal:
    if isinstance(actor, Principal):
        return actor
    return Principal.from_user(actor)


def can_access(principal, resource, action: str) -> bool:
    principal = as_principal(principal)
    if principal.is_admin:
        return True
    owner_id = getattr(resource, "customer_id", None)
    if owner_id is None or owner_id != principal.id:
        return False
    return action in OWNER_ACTIONS


def require_access(principal, resource, action: str) -> Principal:
    """Raise Forbidden (and audit it) unless can_access allows the action."""
    principal = as_principal(principal)
    if can_access(principal, resource, action):
        return principal

    resource_label = f"{type(resource).__name__.lower()}:{getattr(resource, 'id', None)}"
    current_app.logger.warning(
        "Access denied: user %s (%s) -> %s %s",
        principal.id, principal.role.value, action, resource_label,
    )
    security_service.log_security_event(
        user_id=principal.id,
        event_type="ACCESS_DENIED",
        success=False,
        resource=resource_label,
        action=action,
        reason=f"{principal.role.value} may not {action} this resource",
        ip_address=request.remote_addr if has_request_context() else None,
        user_agent=request.headers.get("User-Agent") if has_request_context() else None,
        commit=True,
    )
    raise Forbidden("You do not have access to this resource")


def require_admin(principal, action: str) -> Principal:
    principal = as_principal(principal)
    if principal.is_admin:
        return principal
    security_service.log_security_event(
        user_id=principal.id,
        event_type="ACCESS_DENIED",
        success=False,
        action=action,
        reason=f"{principal.role.value} attempted admin-only action",
        commit=True,
    )
    raise Forbidden("Admin access required")


def price_tier_for(role) -> PriceTier:
    if role is None:
        return PriceTier.LIST
    return ROLE_PRICE_TIER[Role.parse(role)]


def visible_price_paise(role, product) -> int | None:
    """
    Price shown to (and charged to) a role.

    Dealers (and admins) fall back dealer -> B2B -> list; B2B customers
    fall back B2B -> list; retail and anonymous visitors see list price.
    """
    tier = price_tier_for(role)
    if tier is PriceTier.DEALER:
        candidates = (product.dealer_price_paise, product.b2b_price_paise, product.price_paise)
    elif tier is PriceTier.B2B:
        candidates = (product.b2b_price_paise, product.price_paise)
    else:
        candidates = (product.price_paise,)
    for price in candidates:
        if price is not None:
            return price
    return None
