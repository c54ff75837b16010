"""
Access policy tests.

Verifies:
- ADMIN may do everything
- Customers may only use owner actions on their own records
- Any action on someone else's record is refused
- Role -> price tier mapping and fallbacks
"""

from types import SimpleNamespace

import pytest

from homelia.errors import Forbidden
from homelia.extensions import db
from homelia.models import SecurityEvent
from homelia.permissions import OWNER_ACTIONS, Action, PriceTier, Role
from homelia.services import access_policy
from homelia.services.access_policy import Principal


ALL_ACTIONS = [
    Action.READ,
    Action.CREATE,
    Action.CANCEL,
    Action.UPDATE_STATUS,
    Action.PRICE,
    Action.DECIDE,
    Action.CONVERT,
    Action.GENERATE_INVOICE,
]

CUSTOMER_ROLES = [Role.DEALER, Role.B2B_CUSTOMER, Role.RETAIL_CUSTOMER]


def _resource(customer_id, resource_id=1):
    return SimpleNamespace(id=resource_id, customer_id=customer_id)


class TestCanAccess:

    @pytest.mark.parametrize("action", ALL_ACTIONS)
    def test_admin_can_do_everything(self, action):
        assert access_policy.can_access(Principal(id=1, role=Role.ADMIN), _resource(42), action)

    @pytest.mark.parametrize("role", CUSTOMER_ROLES)
    @pytest.mark.parametrize("action", ALL_ACTIONS)
    def test_owner_limited_to_owner_actions(self, role, action):
        allowed = access_policy.can_access(Principal(id=7, role=role), _resource(7), action)
        assert allowed is (action in OWNER_ACTIONS)

    @pytest.mark.parametrize("role", CUSTOMER_ROLES)
    @pytest.mark.parametrize("action", ALL_ACTIONS)
    def test_non_owner_refused_every_action(self, role, action):
        assert not access_policy.can_access(Principal(id=7, role=role), _resource(8), action)

    def test_resource_without_owner_is_admin_only(self):
        guest_sample = _resource(None)
        assert not access_policy.can_access(Principal(id=7, role=Role.B2B_CUSTOMER), guest_sample, Action.READ)
        assert access_policy.can_access(Principal(id=1, role=Role.ADMIN), guest_sample, Action.READ)

    def test_accepts_user_objects(self):
        user = SimpleNamespace(id=7, role="b2b_customer")
        assert access_policy.can_access(user, _resource(7), Action.READ)


class TestRequireAccess:

    def test_allowed_returns_principal(self, b2b):
        principal = access_policy.require_access(b2b, _resource(b2b.id), Action.CANCEL)
        assert principal == Principal(id=b2b.id, role=Role.B2B_CUSTOMER)

    def test_denial_is_forbidden_and_audited(self, b2b, other_b2b):
        with pytest.raises(Forbidden):
            access_policy.require_access(other_b2b, _resource(b2b.id, resource_id=55), Action.READ)

        event = db.session.query(SecurityEvent).one()
        assert event.event_type == "ACCESS_DENIED"
        assert event.user_id == other_b2b.id
        assert event.resource == "simplenamespace:55"
        assert event.action == Action.READ
        assert event.success is False

    def test_require_admin(self, admin, dealer):
        assert access_policy.require_admin(admin, "reports").is_admin
        with pytest.raises(Forbidden):
            access_policy.require_admin(dealer, "reports")
        assert db.session.query(SecurityEvent).filter_by(user_id=dealer.id).count() == 1


class TestPriceTiers:

    @pytest.mark.parametrize(
        "role,tier",
        [
            (Role.ADMIN, PriceTier.DEALER),
            (Role.DEALER, PriceTier.DEALER),
            (Role.B2B_CUSTOMER, PriceTier.B2B),
            (Role.RETAIL_CUSTOMER, PriceTier.LIST),
            ("dealer", PriceTier.DEALER),
            (None, PriceTier.LIST),
        ],
    )
    def test_price_tier_for(self, role, tier):
        assert access_policy.price_tier_for(role) is tier

    @pytest.mark.parametrize(
        "role,prices,expected",
        [
            (Role.DEALER, (10000, 9000, 8000), 8000),
            (Role.DEALER, (10000, 9000, None), 9000),
            (Role.DEALER, (10000, None, None), 10000),
            (Role.B2B_CUSTOMER, (10000, 9000, 8000), 9000),
            (Role.B2B_CUSTOMER, (10000, None, 8000), 10000),
            (Role.RETAIL_CUSTOMER, (10000, 9000, 8000), 10000),
            (None, (10000, 9000, 8000), 10000),
            (Role.RETAIL_CUSTOMER, (None, None, None), None),
        ],
    )
    def test_visible_price_fallbacks(self, role, prices, expected):
        list_price, b2b_price, dealer_price = prices
        product = SimpleNamespace(price_paise=list_price, b2b_price_paise=b2b_price, dealer_price_paise=dealer_price)
        assert access_policy.visible_price_paise(role, product) == expected


class TestRoleParsing:

    @pytest.mark.parametrize("raw", ["ADMIN", "admin", " Dealer ", Role.B2B_CUSTOMER])
    def test_parse_accepts_known_roles(self, raw):
        assert isinstance(Role.parse(raw), Role)

    @pytest.mark.parametrize("raw", ["SUPERUSER", "", None])
    def test_parse_rejects_unknown_roles(self, raw):
        with pytest.raises(ValueError):
            Role.parse(raw)
