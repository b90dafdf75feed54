# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-password "Password123!"]
#   Create tables and the default admin/cashier users (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username ama --email ama@school.local --password "Password123!" --role cashier
#
# Integrity checks (cached values against their history):
# - python -m flask stock reconcile [--book-id 3] [--repair]
#   Replay each book's stock history and compare with Book.stock.
# - python -m flask suppliers reconcile [--supplier-id 2] [--repair]
#   Fold each supplier's orders and payments and compare with Supplier.balance_cents.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Book, Supplier, User
from .services.auth_service import create_user, PasswordValidationError, VALID_ROLES
from .services import stock_service, supplier_service
from .validation import ValidationError, ConflictError, NotFoundError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-password', default='Password123!', help='Password for the default users')
@with_appcontext
def init_system(admin_password):
    """
    Create all tables and the default users.

    Creates:
    - admin   -> admin@bookshop.local   (role admin)
    - cashier -> cashier@bookshop.local (role cashier)

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing bookshop...")
    db.create_all()
    click.echo("PASS Tables created")

    default_users = [
        ("admin", "Administrator", "admin@bookshop.local", "admin"),
        ("cashier", "Cashier", "cashier@bookshop.local", "cashier"),
    ]
    for username, name, email, role in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username=username, name=name, email=email, password=admin_password, role=role)
            click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{username}': {str(e)}")
            return

    click.echo("\nDONE Bookshop initialized. Change the default passwords!")


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
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', default=None, help='Display name (defaults to username)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(VALID_ROLES), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, email, name, password, role):
    """Create a user."""
    try:
        user = create_user(username=username, name=name, email=email, password=password, role=role)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        raise SystemExit(1)
    except (ConflictError, ValidationError) as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with role and active status."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<10} {'Active'}")
    click.echo("="*80)
    for user in users:
        active_str = "yes" if user.is_active else "no"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<10} {active_str}")
    click.echo("="*80 + "\n")


# =============================================================================
# RECONCILIATION
# =============================================================================

@click.group('stock')
def stock_group():
    """Stock ledger integrity commands."""


@stock_group.command('reconcile')
@click.option('--book-id', type=int, help='Check a single book')
@click.option('--repair', is_flag=True, help='Rewrite Book.stock from history where it drifted')
@with_appcontext
def reconcile_stock(book_id, repair):
    """Replay stock history and compare with the cached Book.stock."""
    if book_id:
        book_ids = [book_id]
    else:
        book_ids = [row.id for row in db.session.query(Book.id).order_by(Book.id).all()]

    drift = 0
    for bid in book_ids:
        try:
            result = stock_service.recompute_from_history(bid, repair=repair)
        except NotFoundError as e:
            click.echo(f"FAIL {e}")
            raise SystemExit(1)
        if result.consistent:
            continue
        drift += 1
        current_app.logger.warning(
            "Stock drift on book %s: cached=%s derived=%s broken=%s",
            bid, result.cached_stock, result.derived_stock, result.broken_links,
        )
        status = "REPAIRED" if result.repaired else "DRIFT"
        click.echo(
            f"{status} book {bid}: cached={result.cached_stock} derived={result.derived_stock}"
            f" broken_entries={result.broken_links}"
        )

    click.echo(f"DONE Checked {len(book_ids)} books, {drift} inconsistent")


@click.group('suppliers')
def suppliers_group():
    """Supplier ledger integrity commands."""


@suppliers_group.command('reconcile')
@click.option('--supplier-id', type=int, help='Check a single supplier')
@click.option('--repair', is_flag=True, help='Rewrite Supplier.balance_cents from the ledger')
@with_appcontext
def reconcile_suppliers(supplier_id, repair):
    """Fold each supplier's ledger and compare with the cached balance."""
    if supplier_id:
        supplier_ids = [supplier_id]
    else:
        supplier_ids = [row.id for row in db.session.query(Supplier.id).order_by(Supplier.id).all()]

    drift = 0
    for sid in supplier_ids:
        try:
            result = supplier_service.recompute_balance(sid, repair=repair)
        except NotFoundError as e:
            click.echo(f"FAIL {e}")
            raise SystemExit(1)
        if result.consistent:
            continue
        drift += 1
        current_app.logger.warning(
            "Balance drift on supplier %s: cached=%s derived=%s",
            sid, result.cached_balance_cents, result.derived_balance_cents,
        )
        status = "REPAIRED" if result.repaired else "DRIFT"
        click.echo(
            f"{status} supplier {sid}: cached={result.cached_balance_cents}"
            f" derived={result.derived_balance_cents}"
        )

    click.echo(f"DONE Checked {len(supplier_ids)} suppliers, {drift} inconsistent")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(suppliers_group)
