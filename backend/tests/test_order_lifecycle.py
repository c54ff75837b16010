"""
Order lifecycle tests.

Verifies:
- Checkout snapshots the caller's price tier and allocates an ORD number
- Checkout rejects empty carts, MOQ violations, price-on-request and inactive products
- Every transition outside the table is rejected and leaves status and history untouched
- Customers may cancel their own orders and nothing else
- Other customers are refused with Forbidden and the refusal is audited
"""

import threading

import pytest

from homelia import create_app
from homelia.errors import Forbidden, IllegalTransition, NotFound, ValidationError
from homelia.extensions import db
from homelia.models import Notification, Order, Product, SecurityEvent
from homelia.permissions import Role
from homelia.services import order_service
from homelia.services.access_policy import Principal
from homelia.services.order_service import (
    CANCELLED,
    CONFIRMED,
    DELIVERED,
    ORDER_STATUSES,
    ORDER_TRANSITIONS,
    PENDING,
    PROCESSING,
    SHIPPED,
)
from homelia.time_utils import utcnow

from conftest import ADDRESS, make_user


# Shortest admin path from PENDING to each status
PATH_TO = {
    PENDING: [],
    CONFIRMED: [CONFIRMED],
    PROCESSING: [CONFIRMED, PROCESSING],
    SHIPPED: [CONFIRMED, PROCESSING, SHIPPED],
    DELIVERED: [CONFIRMED, PROCESSING, SHIPPED, DELIVERED],
    CANCELLED: [CANCELLED],
}

ILLEGAL_PAIRS = [
    (current, target)
    for current in ORDER_STATUSES
    for target in ORDER_STATUSES
    if target not in ORDER_TRANSITIONS[current]
]


def _place(customer, products, *lines):
    items = [{"product_id": products[key].id, "quantity": qty} for key, qty in lines]
    return order_service.create_order(customer, items, ADDRESS, ADDRESS)


def _drive(order_id, status, admin):
    for step in PATH_TO[status]:
        order_service.transition(order_id, step, admin)
    return db.session.get(Order, order_id)


class TestCheckout:

    def test_order_number_and_pending_status(self, b2b, products):
        order = _place(b2b, products, ("walnut", 2))

        assert order.order_number == f"ORD-{utcnow().year}-000001"
        assert order.status == PENDING
        assert order.order_type == order_service.ORDER_TYPE_DIRECT
        assert [h.status for h in order.status_history] == [PENDING]

    def test_numbers_are_sequential_across_customers(self, b2b, other_b2b, products):
        first = _place(b2b, products, ("walnut", 1))
        second = _place(other_b2b, products, ("walnut", 1))

        year = utcnow().year
        assert first.order_number == f"ORD-{year}-000001"
        assert second.order_number == f"ORD-{year}-000002"

    @pytest.mark.parametrize(
        "user_fixture,walnut_price,marble_price",
        [
            ("retail", 10000, 20000),
            ("b2b", 9000, 18000),
            ("dealer", 8000, 18000),  # no dealer price on marble: falls back to B2B
        ],
    )
    def test_unit_price_follows_role_tier(self, request, products, user_fixture, walnut_price, marble_price):
        customer = request.getfixturevalue(user_fixture)

        order = _place(customer, products, ("walnut", 3), ("marble", 2))

        assert [item.unit_price_paise for item in order.items] == [walnut_price, marble_price]
        assert [item.line_total_paise for item in order.items] == [3 * walnut_price, 2 * marble_price]
        assert order.total_amount_paise == 3 * walnut_price + 2 * marble_price

    def test_price_snapshot_survives_catalog_change(self, b2b, products):
        order = _place(b2b, products, ("walnut", 1))

        products["walnut"].b2b_price_paise = 12345
        db.session.commit()

        assert db.session.get(Order, order.id).items[0].unit_price_paise == 9000

    def test_admin_is_notified(self, b2b, products):
        order = _place(b2b, products, ("walnut", 1))

        note = db.session.query(Notification).filter_by(type="NEW_ORDER").one()
        assert order.order_number in note.message

    def test_empty_items_rejected(self, b2b, products):
        with pytest.raises(ValidationError) as exc:
            order_service.create_order(b2b, [], ADDRESS, ADDRESS)
        assert "items" in exc.value.errors

    def test_missing_address_rejected(self, b2b, products):
        with pytest.raises(ValidationError):
            order_service.create_order(b2b, [{"product_id": products["walnut"].id, "quantity": 1}], {}, ADDRESS)

    def test_moq_enforced(self, b2b, products):
        with pytest.raises(ValidationError) as exc:
            _place(b2b, products, ("bulk", 5))
        assert exc.value.errors == {"items[0].quantity": "must be at least 10"}

        order = _place(b2b, products, ("bulk", 10))
        assert order.total_amount_paise == 50000

    def test_price_on_request_cannot_be_checked_out(self, b2b, products):
        with pytest.raises(ValidationError):
            _place(b2b, products, ("custom", 1))

    def test_inactive_product_rejected(self, b2b, products):
        products["marble"].is_active = False
        db.session.commit()

        with pytest.raises(ValidationError):
            _place(b2b, products, ("marble", 1))

    def test_failed_checkout_consumes_no_number(self, b2b, products):
        with pytest.raises(ValidationError):
            _place(b2b, products, ("walnut", 1), ("custom", 1))

        order = _place(b2b, products, ("walnut", 1))
        assert order.order_number.endswith("-000001")
        assert db.session.query(Order).count() == 1


class TestTransitions:

    def test_admin_walks_order_to_delivered(self, admin, b2b, products):
        order = _place(b2b, products, ("walnut", 1))

        order = _drive(order.id, DELIVERED, admin)

        assert order.status == DELIVERED
        assert [h.status for h in order.status_history] == [PENDING, CONFIRMED, PROCESSING, SHIPPED, DELIVERED]
        assert order.status_history[-1].actor_user_id == admin.id

    @pytest.mark.parametrize("current,target", ILLEGAL_PAIRS)
    def test_illegal_transition_leaves_order_untouched(self, admin, b2b, products, current, target):
        order = _drive(_place(b2b, products, ("walnut", 1)).id, current, admin)
        history_before = len(order.status_history)

        with pytest.raises(IllegalTransition):
            order_service.transition(order.id, target, admin)

        order = db.session.get(Order, order.id)
        assert order.status == current
        assert len(order.status_history) == history_before

    def test_pending_to_shipped_is_illegal(self, admin, b2b, products):
        order = _place(b2b, products, ("walnut", 1))

        with pytest.raises(IllegalTransition):
            order_service.transition(order.id, SHIPPED, admin)

        assert db.session.get(Order, order.id).status == PENDING

    def test_shipped_order_cannot_be_cancelled(self, admin, b2b, products):
        order = _drive(_place(b2b, products, ("walnut", 1)).id, SHIPPED, admin)

        with pytest.raises(IllegalTransition):
            order_service.cancel_order(order.id, b2b, "changed my mind")

        assert db.session.get(Order, order.id).status == SHIPPED

    def test_unknown_status_is_validation_error(self, admin, b2b, products):
        order = _place(b2b, products, ("walnut", 1))

        with pytest.raises(ValidationError):
            order_service.transition(order.id, "LOST_IN_TRANSIT", admin)

    def test_missing_order_is_not_found(self, admin):
        with pytest.raises(NotFound):
            order_service.transition(9999, CONFIRMED, admin)

    def test_admin_notes_recorded(self, admin, b2b, products):
        order = _place(b2b, products, ("walnut", 1))

        order = order_service.transition(order.id, CONFIRMED, admin, note="stock reserved", admin_notes="call before dispatch")

        assert order.admin_notes == "call before dispatch"
        assert order.status_history[-1].note == "stock reserved"

    def test_customer_is_notified_of_status_change(self, admin, b2b, products):
        order = _place(b2b, products, ("walnut", 1))
        order_service.transition(order.id, CONFIRMED, admin)

        note = db.session.query(Notification).filter_by(type="ORDER_STATUS", recipient_id=b2b.id).one()
        assert CONFIRMED in note.message


class TestCustomerAccess:

    def test_owner_can_cancel_pending_order(self, b2b, products):
        order = _place(b2b, products, ("walnut", 1))

        order = order_service.cancel_order(order.id, b2b, "ordered the wrong shade")

        assert order.status == CANCELLED
        assert order.status_history[-1].note == "ordered the wrong shade"
        assert order.status_history[-1].actor_user_id == b2b.id

    @pytest.mark.parametrize("target", [CONFIRMED, PROCESSING, SHIPPED, DELIVERED])
    def test_owner_cannot_advance_status(self, b2b, products, target):
        order = _place(b2b, products, ("walnut", 1))

        with pytest.raises(Forbidden):
            order_service.transition(order.id, target, b2b)

        assert db.session.get(Order, order.id).status == PENDING

    @pytest.mark.parametrize("operation", ["read", "history", "cancel", "confirm", "unknown_status"])
    def test_other_customer_is_forbidden(self, b2b, other_b2b, products, operation):
        order = _place(b2b, products, ("walnut", 1))
        calls = {
            "read": lambda: order_service.get_order(order.id, other_b2b),
            "history": lambda: order_service.order_history(order.id, other_b2b),
            "cancel": lambda: order_service.cancel_order(order.id, other_b2b),
            "confirm": lambda: order_service.transition(order.id, CONFIRMED, other_b2b),
            "unknown_status": lambda: order_service.transition(order.id, "LOST_IN_TRANSIT", other_b2b),
        }

        with pytest.raises(Forbidden):
            calls[operation]()

        assert db.session.get(Order, order.id).status == PENDING
        event = db.session.query(SecurityEvent).filter_by(event_type="ACCESS_DENIED").one()
        assert event.user_id == other_b2b.id
        assert event.resource == f"order:{order.id}"
        assert event.success is False

    def test_list_orders_is_scoped_to_owner(self, admin, b2b, other_b2b, products):
        _place(b2b, products, ("walnut", 1))
        _place(b2b, products, ("marble", 1))
        _place(other_b2b, products, ("walnut", 1))

        own, own_total = order_service.list_orders(b2b)
        everything, all_total = order_service.list_orders(admin)

        assert own_total == 2
        assert {o.customer_id for o in own} == {b2b.id}
        assert all_total == 3
        assert len(everything) == 3

    def test_list_orders_filters_by_status(self, admin, b2b, products):
        first = _place(b2b, products, ("walnut", 1))
        _place(b2b, products, ("walnut", 1))
        order_service.cancel_order(first.id, b2b)

        rows, total = order_service.list_orders(b2b, status="cancelled")

        assert total == 1
        assert rows[0].id == first.id


class TestConcurrentTransitions:
    """Racing transitions from the same source state on a file-backed SQLite database."""

    THREADS = 8

    @pytest.fixture
    def file_app(self, tmp_path):
        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'orders.sqlite3'}",
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

    def test_only_one_move_out_of_processing_wins(self, file_app):
        with file_app.app_context():
            admin = make_user("admin@homelia.test", Role.ADMIN)
            owner = make_user("b2b@homelia.test", Role.B2B_CUSTOMER, state_code="27")
            walnut = Product(product_code="MER-1001", name="Merino Walnut", brand="Merino", category="Laminates", price_paise=10000)
            db.session.add(walnut)
            db.session.commit()
            order = order_service.create_order(owner, [{"product_id": walnut.id, "quantity": 1}], ADDRESS, ADDRESS)
            order_id = order.id
            _drive(order_id, PROCESSING, admin)
            contenders = [
                (Principal(id=admin.id, role=Role.ADMIN), SHIPPED),
                (Principal(id=owner.id, role=Role.B2B_CUSTOMER), CANCELLED),
            ]
            db.session.remove()

        results = []
        lock = threading.Lock()
        start = threading.Barrier(self.THREADS)

        def worker(principal, target):
            with file_app.app_context():
                start.wait()
                try:
                    moved = order_service.transition(order_id, target, principal)
                except Exception as exc:  # collected and asserted below
                    outcome = (type(exc).__name__, None)
                else:
                    outcome = ("ok", moved.status)
                finally:
                    db.session.remove()
                with lock:
                    results.append(outcome)

        threads = [
            threading.Thread(target=worker, args=contenders[n % 2])
            for n in range(self.THREADS)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=120)

        winners = [status for outcome, status in results if outcome == "ok"]
        assert len(results) == self.THREADS
        assert len(winners) == 1
        assert sorted(outcome for outcome, _ in results if outcome != "ok") == ["IllegalTransition"] * (self.THREADS - 1)
        with file_app.app_context():
            order = db.session.get(Order, order_id)
            assert order.status == winners[0]
            assert [h.status for h in order.status_history] == [PENDING, CONFIRMED, PROCESSING, winners[0]]
