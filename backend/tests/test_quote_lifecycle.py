"""
Quote (RFQ) lifecycle tests.

Verifies:
- Submitted quotes carry no prices
- Pricing requires every line and computes the total
- Approve/reject rules, including expiry
- Terminal quotes never change again
- Conversion creates exactly one order at the quoted prices
- Other customers are refused with Forbidden
"""

import threading
from datetime import timedelta

import pytest

from homelia import create_app
from homelia.errors import AlreadyConverted, Forbidden, IllegalTransition, ValidationError
from homelia.extensions import db
from homelia.models import Order, Product, Quote, SecurityEvent, SequenceCounter
from homelia.permissions import Role
from homelia.services import quote_service
from homelia.services.access_policy import Principal
from homelia.services.quote_service import APPROVED, EXPIRED, QUOTED, REJECTED, REQUESTED
from homelia.time_utils import utcnow

from conftest import ADDRESS, make_user


def _request(customer, products):
    """Walnut x10 and marble x5."""
    return quote_service.create_quote(
        customer,
        [
            {"product_id": products["walnut"].id, "quantity": 10},
            {"product_id": products["marble"].id, "requested_qty": 5},
        ],
        notes="for a showroom fit-out",
    )


def _price(quote, admin, **kwargs):
    walnut, marble = quote.items
    return quote_service.price_quote(quote.id, {walnut.id: 10000, marble.id: 20000}, admin, **kwargs)


def _snapshot(quote_id):
    quote = db.session.get(Quote, quote_id)
    return quote.to_dict()


@pytest.fixture
def quoted(admin, b2b, products):
    return _price(_request(b2b, products), admin)


@pytest.fixture
def approved(quoted, b2b):
    return quote_service.approve_quote(quoted.id, b2b)


class TestSubmission:

    def test_new_quote_is_requested_and_unpriced(self, b2b, products):
        quote = _request(b2b, products)

        assert quote.quote_number == f"RFQ-{utcnow().year}-000001"
        assert quote.status == REQUESTED
        assert quote.total_amount_paise is None
        assert quote.valid_until is None
        assert [item.requested_qty for item in quote.items] == [10, 5]
        assert all(item.quoted_price_paise is None for item in quote.items)

    def test_price_on_request_products_can_be_quoted(self, b2b, products):
        quote = quote_service.create_quote(b2b, [{"product_id": products["custom"].id, "quantity": 3}])
        assert quote.items[0].product_id == products["custom"].id

    def test_empty_request_rejected(self, b2b, products):
        with pytest.raises(ValidationError):
            quote_service.create_quote(b2b, [])

    def test_zero_quantity_rejected(self, b2b, products):
        with pytest.raises(ValidationError):
            quote_service.create_quote(b2b, [{"product_id": products["walnut"].id, "quantity": 0}])


class TestPricing:

    def test_pricing_sets_total_and_default_validity(self, admin, b2b, products):
        quote = _request(b2b, products)

        quote = _price(quote, admin, admin_notes="includes transport")

        assert quote.status == QUOTED
        assert quote.total_amount_paise == 200_000
        assert [item.quoted_price_paise for item in quote.items] == [10000, 20000]
        assert quote.priced_by_user_id == admin.id
        assert quote.admin_notes == "includes transport"
        assert quote.valid_until > utcnow() + timedelta(days=14)

    def test_pricing_accepts_list_form(self, admin, b2b, products):
        quote = _request(b2b, products)
        walnut, marble = quote.items

        quote = quote_service.price_quote(
            quote.id,
            [
                {"item_id": walnut.id, "quoted_price_paise": 9500},
                {"item_id": marble.id, "quoted_price_paise": 19000},
            ],
            admin,
        )

        assert quote.total_amount_paise == 10 * 9500 + 5 * 19000

    def test_missing_line_price_leaves_quote_unchanged(self, admin, b2b, products):
        quote = _request(b2b, products)
        walnut, marble = quote.items

        with pytest.raises(ValidationError) as exc:
            quote_service.price_quote(quote.id, {walnut.id: 10000}, admin)
        assert f"items.{marble.id}" in exc.value.errors

        quote = db.session.get(Quote, quote.id)
        assert quote.status == REQUESTED
        assert quote.total_amount_paise is None
        assert all(item.quoted_price_paise is None for item in quote.items)

    def test_past_validity_rejected(self, admin, b2b, products):
        quote = _request(b2b, products)

        with pytest.raises(ValidationError):
            _price(quote, admin, valid_until=(utcnow() - timedelta(days=1)).isoformat())

        assert db.session.get(Quote, quote.id).status == REQUESTED

    def test_customer_cannot_price(self, b2b, products):
        quote = _request(b2b, products)

        with pytest.raises(Forbidden):
            _price(quote, b2b)

        assert db.session.get(Quote, quote.id).status == REQUESTED

    def test_quoted_quote_cannot_be_repriced(self, admin, quoted):
        with pytest.raises(IllegalTransition):
            _price(quoted, admin)


class TestDecisions:

    def test_owner_approves(self, quoted, b2b):
        quote = quote_service.approve_quote(quoted.id, b2b)

        assert quote.status == APPROVED
        assert quote.decided_by_user_id == b2b.id
        assert quote.total_amount_paise == 200_000

    def test_owner_rejects_with_reason(self, quoted, b2b):
        quote = quote_service.reject_quote(quoted.id, b2b, "price too high")

        assert quote.status == REJECTED
        assert quote.rejection_reason == "price too high"
        assert quote.total_amount_paise == 200_000

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reject_requires_reason(self, quoted, b2b, reason):
        with pytest.raises(ValidationError):
            quote_service.reject_quote(quoted.id, b2b, reason)

        assert db.session.get(Quote, quoted.id).status == QUOTED

    def test_unknown_decision_rejected(self, quoted, b2b):
        with pytest.raises(ValidationError):
            quote_service.decide(quoted.id, "MAYBE", b2b)

    def test_requested_quote_cannot_be_approved(self, b2b, products):
        quote = _request(b2b, products)

        with pytest.raises(IllegalTransition):
            quote_service.approve_quote(quote.id, b2b)

    def test_admin_rejects_unpriced_quote(self, admin, b2b, products):
        quote = _request(b2b, products)

        quote = quote_service.reject_quote(quote.id, admin, "discontinued range")

        assert quote.status == REJECTED
        assert quote.total_amount_paise is None

    def test_owner_cannot_reject_unpriced_quote(self, b2b, products):
        quote = _request(b2b, products)

        with pytest.raises(Forbidden):
            quote_service.reject_quote(quote.id, b2b, "never mind")

        assert db.session.get(Quote, quote.id).status == REQUESTED

    def test_expired_quote_cannot_be_approved(self, quoted, b2b):
        quote = db.session.get(Quote, quoted.id)
        quote.valid_until = utcnow() - timedelta(minutes=1)
        db.session.commit()

        with pytest.raises(IllegalTransition):
            quote_service.approve_quote(quoted.id, b2b)

        assert db.session.get(Quote, quoted.id).status == QUOTED


class TestTerminalQuotes:

    @pytest.fixture
    def rejected(self, quoted, b2b):
        return quote_service.reject_quote(quoted.id, b2b, "price too high")

    @pytest.mark.parametrize("terminal", ["approved", "rejected"])
    @pytest.mark.parametrize("operation", ["price", "approve", "reject"])
    def test_terminal_quote_is_immutable(self, request, admin, b2b, terminal, operation):
        quote = request.getfixturevalue(terminal)
        before = _snapshot(quote.id)
        calls = {
            "price": lambda: _price(db.session.get(Quote, quote.id), admin),
            "approve": lambda: quote_service.approve_quote(quote.id, b2b),
            "reject": lambda: quote_service.reject_quote(quote.id, admin, "late rejection"),
        }

        with pytest.raises(IllegalTransition):
            calls[operation]()

        assert _snapshot(quote.id) == before


class TestExpiry:

    def test_expire_quotes_moves_only_stale_quoted(self, admin, b2b, products):
        stale = _price(_request(b2b, products), admin)
        fresh = _price(_request(b2b, products), admin)
        untouched = _request(b2b, products)

        quote = db.session.get(Quote, stale.id)
        quote.valid_until = utcnow() - timedelta(hours=1)
        db.session.commit()

        expired = quote_service.expire_quotes()

        assert expired == [stale.quote_number]
        assert db.session.get(Quote, stale.id).status == EXPIRED
        assert db.session.get(Quote, fresh.id).status == QUOTED
        assert db.session.get(Quote, untouched.id).status == REQUESTED

    def test_expire_quotes_with_nothing_due(self, quoted):
        assert quote_service.expire_quotes() == []


class TestConversion:

    def test_convert_creates_order_at_quoted_prices(self, approved, b2b, products):
        order = quote_service.convert_to_order(approved.id, b2b, ADDRESS, ADDRESS)

        assert order.order_number == f"ORD-{utcnow().year}-000001"
        assert order.status == "PENDING"
        assert order.order_type == "RFQ"
        assert order.quote_id == approved.id
        assert order.customer_id == b2b.id
        assert [(i.product_id, i.quantity, i.unit_price_paise) for i in order.items] == [
            (products["walnut"].id, 10, 10000),
            (products["marble"].id, 5, 20000),
        ]
        assert order.total_amount_paise == 200_000

        quote = db.session.get(Quote, approved.id)
        assert quote.status == APPROVED
        assert quote.converted_order_id == order.id

    def test_second_conversion_fails(self, approved, b2b, admin):
        quote_service.convert_to_order(approved.id, b2b, ADDRESS, ADDRESS)

        with pytest.raises(AlreadyConverted):
            quote_service.convert_to_order(approved.id, b2b, ADDRESS, ADDRESS)
        with pytest.raises(AlreadyConverted):
            quote_service.convert_to_order(approved.id, admin, ADDRESS, ADDRESS)

        assert db.session.query(Order).filter_by(quote_id=approved.id).count() == 1

    def test_admin_conversion_belongs_to_customer(self, approved, admin, b2b):
        order = quote_service.convert_to_order(approved.id, admin, ADDRESS, ADDRESS)

        assert order.customer_id == b2b.id
        assert order.status_history[0].actor_user_id == admin.id

    def test_unapproved_quote_cannot_be_converted(self, quoted, b2b):
        with pytest.raises(IllegalTransition):
            quote_service.convert_to_order(quoted.id, b2b, ADDRESS, ADDRESS)

        assert db.session.query(Order).count() == 0

    def test_expired_approved_quote_cannot_be_converted(self, approved, b2b):
        quote = db.session.get(Quote, approved.id)
        quote.valid_until = utcnow() - timedelta(days=1)
        db.session.commit()

        with pytest.raises(IllegalTransition) as exc:
            quote_service.convert_to_order(approved.id, b2b, ADDRESS, ADDRESS)

        assert exc.value.errors == {"valid_until": "passed"}
        quote = db.session.get(Quote, approved.id)
        assert quote.status == APPROVED
        assert quote.converted_order_id is None
        assert db.session.query(Order).count() == 0
        assert db.session.query(SequenceCounter).filter_by(document_type="ORDER").count() == 0


class TestQuoteAccess:

    @pytest.mark.parametrize(
        "operation",
        ["read", "approve", "reject", "convert", "unknown_decision", "convert_without_address"],
    )
    def test_other_customer_is_forbidden(self, approved, other_b2b, operation):
        calls = {
            "read": lambda: quote_service.get_quote(approved.id, other_b2b),
            "approve": lambda: quote_service.approve_quote(approved.id, other_b2b),
            "reject": lambda: quote_service.reject_quote(approved.id, other_b2b, "not mine"),
            "convert": lambda: quote_service.convert_to_order(approved.id, other_b2b, ADDRESS, ADDRESS),
            "unknown_decision": lambda: quote_service.decide(approved.id, "MAYBE", other_b2b),
            "convert_without_address": lambda: quote_service.convert_to_order(approved.id, other_b2b, None, {}),
        }
        before = _snapshot(approved.id)

        with pytest.raises(Forbidden):
            calls[operation]()

        assert _snapshot(approved.id) == before
        assert db.session.query(Order).count() == 0
        assert db.session.query(SecurityEvent).filter_by(user_id=other_b2b.id, event_type="ACCESS_DENIED").count() == 1

    def test_list_quotes_scoped_to_owner(self, admin, b2b, other_b2b, products):
        _request(b2b, products)
        _request(other_b2b, products)

        own, own_total = quote_service.list_quotes(other_b2b)
        _, all_total = quote_service.list_quotes(admin)

        assert own_total == 1
        assert own[0].customer_id == other_b2b.id
        assert all_total == 2


class TestConcurrentDecisions:
    """Racing decisions on one QUOTED quote against a file-backed SQLite database."""

    THREADS = 8

    @pytest.fixture
    def file_app(self, tmp_path):
        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'quotes.sqlite3'}",
            'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30}},
            'BCRYPT_ROUNDS': 4,
            'JWT_SECRET': 'test-jwt-secret',
        })
        with app.app_context():
            db.create_all()
        yield app
        with app.app_context():
            db.session.remove()
            db.engine.dispose()

    def test_only_one_decision_wins(self, file_app):
        with file_app.app_context():
            admin = make_user("admin@homelia.test", Role.ADMIN)
            owner = make_user("b2b@homelia.test", Role.B2B_CUSTOMER, state_code="27")
            walnut = Product(product_code="MER-1001", name="Merino Walnut", brand="Merino", category="Laminates", price_paise=10000)
            db.session.add(walnut)
            db.session.commit()
            quote = quote_service.create_quote(owner, [{"product_id": walnut.id, "quantity": 4}])
            quote_service.price_quote(quote.id, {quote.items[0].id: 9500}, admin)
            quote_id = quote.id
            customer = Principal(id=owner.id, role=Role.B2B_CUSTOMER)
            staff = Principal(id=admin.id, role=Role.ADMIN)
            contenders = [
                (customer, quote_service.APPROVE, None),
                (customer, quote_service.REJECT, "found a cheaper supplier"),
                (staff, quote_service.REJECT, "stock withdrawn"),
                (customer, quote_service.APPROVE, None),
            ]
            db.session.remove()

        results = []
        lock = threading.Lock()
        start = threading.Barrier(self.THREADS)

        def worker(principal, decision, reason):
            with file_app.app_context():
                start.wait()
                try:
                    decided = quote_service.decide(quote_id, decision, principal, reason)
                except Exception as exc:  # collected and asserted below
                    outcome = (type(exc).__name__, None, None)
                else:
                    outcome = ("ok", decided.status, principal.id)
                finally:
                    db.session.remove()
                with lock:
                    results.append(outcome)

        threads = [
            threading.Thread(target=worker, args=contenders[n % len(contenders)])
            for n in range(self.THREADS)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=120)

        winners = [(status, actor_id) for outcome, status, actor_id in results if outcome == "ok"]
        assert len(results) == self.THREADS
        assert len(winners) == 1
        assert sorted(r[0] for r in results if r[0] != "ok") == ["IllegalTransition"] * (self.THREADS - 1)
        with file_app.app_context():
            quote = db.session.get(Quote, quote_id)
            assert (quote.status, quote.decided_by_user_id) == winners[0]
            assert quote.total_amount_paise == 38_000
