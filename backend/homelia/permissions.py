"""
Role and action definitions.

WHY: Roles were previously compared as ad hoc strings across routes and
dashboards. They are a closed set here, and every access decision goes
through services/access_policy.can_access.

DESIGN PRINCIPLES:
- Role is fixed at registration except by an explicit admin role change
- ADMIN bypasses ownership; every other role is scoped to its own records
- Price-tier visibility is a pure function of role
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    DEALER = "DEALER"
    B2B_CUSTOMER = "B2B_CUSTOMER"
    RETAIL_CUSTOMER = "RETAIL_CUSTOMER"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(
                f"Invalid role '{value}'. Must be one of: {', '.join(r.value for r in cls)}"
            ) from None


# Roles a visitor may pick at self-registration
SELF_REGISTRATION_ROLES = {Role.RETAIL_CUSTOMER, Role.B2B_CUSTOMER, Role.DEALER}


class PriceTier(str, Enum):
    LIST = "LIST"
    B2B = "B2B"
    DEALER = "DEALER"


ROLE_PRICE_TIER = {
    Role.ADMIN: PriceTier.DEALER,
    Role.DEALER: PriceTier.DEALER,
    Role.B2B_CUSTOMER: PriceTier.B2B,
    Role.RETAIL_CUSTOMER: PriceTier.LIST,
}


class Action:
    """Actions a principal may attempt on an order, quote, sample or invoice."""
    READ = "read"
    CREATE = "create"
    CANCEL = "cancel"
    UPDATE_STATUS = "update_status"
    PRICE = "price"
    DECIDE = "decide"
    CONVERT = "convert"
    GENERATE_INVOICE = "generate_invoice"


# Actions the owning (non-admin) customer may perform on their own records
OWNER_ACTIONS = {
    Action.READ,
    Action.CREATE,
    Action.CANCEL,
    Action.DECIDE,
    Action.CONVERT,
}
