# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/homelia/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@homelia.in] [--admin-password "Password123!"]
#   Idempotent bootstrap: creates tables, the default admin, and this year's counters.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role DEALER]
#   List users with role and active status.
# - python -m flask users create --email d@x.in --name "Dealer" --password "Password123!" --role DEALER
#   Create a user (prompts if options are omitted).
# - python -m flask users set-role d@x.in B2B_CUSTOMER
#   Explicit role change (audited).
#
# Document numbering:
# - python -m flask sequences show [--type ORDER]
#   Show every counter row (type, year, prefix, last number).
#
# Quotes:
# - python -m flask quotes expire
#   Move QUOTED quotes past valid_until to EXPIRED.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import User
from .permissions import Role
from .services import auth_service, quote_service, security_service, sequence_service
from .services.sequence_service import DocumentType
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default=None, help='Default admin email (defaults to ADMIN_EMAIL)')
@click.option('--admin-password', default='Password123!', help='Default admin password')
@with_appcontext
def init_system(admin_email, admin_password):
    """
    Initialize Homelia: schema, default admin, current-year counters.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing Homelia...")

    db.create_all()
    click.echo("PASS Tables ready")

    admin_email = (admin_email or current_app.config["DEFAULT_ADMIN_EMAIL"]).lower()
    admin = db.session.query(User).filter_by(email=admin_email).first()
    if admin is None:
        try:
            admin = auth_service.create_user(
                email=admin_email,
                password=admin_password,
                name="Administrator",
                role=Role.ADMIN,
                is_verified=True,
            )
            db.session.commit()
        except DomainError as e:
            db.session.rollback()
            click.echo(f"FAIL Could not create admin: {e.message}")
            return
        click.echo(f"PASS Created admin {admin.email}")
    else:
        click.echo(f"SKIP Admin {admin.email} already exists")

    now = utcnow()
    for doc_type in DocumentType:
        counter = sequence_service.ensure_counter(doc_type, sequence_service.bucket_year(doc_type, now))
        click.echo(f"PASS Counter {counter.document_type}/{counter.year} at {counter.last_number}")

    click.echo("DONE Homelia initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--role', default=None, help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)
    if role:
        try:
            query = query.filter_by(role=Role.parse(role).value)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint='--role')

    users = query.order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Email':<35} {'Name':<25} {'Role':<18} {'Active'}")
    click.echo("="*100)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {user.name:<25} {user.role:<18} {active_str}")
    click.echo("="*100 + "\n")


@users_group.command('create')
@click.option('--email', prompt=True)
@click.option('--name', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', default=Role.RETAIL_CUSTOMER.value, show_default=True)
@click.option('--company', 'company_name', default=None)
@with_appcontext
def create_user_cmd(email, name, password, role, company_name):
    """Create a user (any role, including ADMIN)."""
    try:
        user = auth_service.create_user(
            email=email,
            password=password,
            name=name,
            role=role,
            company_name=company_name,
            is_verified=True,
        )
        db.session.commit()
    except DomainError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Created user {user.id} {user.email} ({user.role})")


@users_group.command('set-role')
@click.argument('email')
@click.argument('role')
@with_appcontext
def set_role(email, role):
    """Change a user's role."""
    try:
        new_role = Role.parse(role)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='ROLE')

    user = db.session.query(User).filter_by(email=email.lower()).first()
    if user is None:
        click.echo(f"FAIL No user with email {email}")
        return

    old_role = user.role
    user.role = new_role.value
    security_service.log_security_event(
        user_id=None,
        event_type="ROLE_CHANGED",
        success=True,
        resource=f"user:{user.id}",
        action="change_role",
        reason=f"{old_role} -> {new_role.value} (cli)",
    )
    db.session.commit()
    click.echo(f"PASS {user.email}: {old_role} -> {user.role}")


# =============================================================================
# SEQUENCE COMMANDS
# =============================================================================

@click.group('sequences')
def sequences_group():
    """Document numbering inspection."""


@sequences_group.command('show')
@click.option('--type', 'document_type', default=None, help='ORDER, QUOTE, SAMPLE or INVOICE')
@with_appcontext
def show_sequences(document_type):
    try:
        counters = sequence_service.list_counters(document_type)
    except DomainError as e:
        raise click.BadParameter(e.message, param_hint='--type')

    if not counters:
        click.echo("No counters yet.")
        return
    click.echo(f"{'Type':<10} {'Year':<6} {'Prefix':<8} {'Last'}")
    for counter in counters:
        click.echo(f"{counter.document_type:<10} {counter.year:<6} {counter.prefix:<8} {counter.last_number}")


# =============================================================================
# QUOTE COMMANDS
# =============================================================================

@click.group('quotes')
def quotes_group():
    """Quote maintenance."""


@quotes_group.command('expire')
@with_appcontext
def expire_quotes():
    """Expire QUOTED quotes whose valid_until has passed."""
    expired = quote_service.expire_quotes()
    for number in expired:
        click.echo(f"EXPIRED {number}")
    click.echo(f"PASS {len(expired)} quote(s) expired")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(quotes_group)
