"""CLI command tests (flask system/users/sequences/quotes)."""

from homelia.extensions import db
from homelia.models import SecurityEvent, SequenceCounter, User
from homelia.permissions import Role


def test_system_init_is_idempotent(app):
    runner = app.test_cli_runner()

    first = runner.invoke(args=['system', 'init', '--admin-email', 'Boss@Homelia.in'])
    second = runner.invoke(args=['system', 'init', '--admin-email', 'boss@homelia.in'])

    assert first.exit_code == 0
    assert 'PASS Created admin boss@homelia.in' in first.output
    assert 'SKIP Admin boss@homelia.in already exists' in second.output
    admin = db.session.query(User).filter_by(email='boss@homelia.in').one()
    assert admin.role == Role.ADMIN.value
    assert db.session.query(SequenceCounter).count() == 5


def test_users_create_and_set_role(app):
    runner = app.test_cli_runner()

    created = runner.invoke(args=[
        'users', 'create', '--email', 'dealer@shop.in', '--name', 'Dealer',
        '--password', 'Password123!', '--role', 'DEALER',
    ])
    assert created.exit_code == 0
    assert 'PASS Created user' in created.output

    changed = runner.invoke(args=['users', 'set-role', 'dealer@shop.in', 'b2b_customer'])
    assert 'DEALER -> B2B_CUSTOMER' in changed.output
    assert db.session.query(User).filter_by(email='dealer@shop.in').one().role == 'B2B_CUSTOMER'
    assert db.session.query(SecurityEvent).filter_by(event_type='ROLE_CHANGED').count() == 1


def test_users_set_role_rejects_unknown_role(app):
    result = app.test_cli_runner().invoke(args=['users', 'set-role', 'x@y.in', 'OWNER'])

    assert result.exit_code != 0


def test_sequences_show(app):
    runner = app.test_cli_runner()
    runner.invoke(args=['system', 'init'])

    result = runner.invoke(args=['sequences', 'show', '--type', 'ORDER'])

    assert result.exit_code == 0
    assert 'ORDER' in result.output
    assert 'INVOICE' not in result.output


def test_quotes_expire_with_nothing_due(app):
    result = app.test_cli_runner().invoke(args=['quotes', 'expire'])

    assert result.exit_code == 0
    assert 'PASS 0 quote(s) expired' in result.output
