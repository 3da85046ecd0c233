# Overview: Flask CLI command groups for bootstrap, user management and ledger reconciliation.

# backend/retail_billing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app retail_billing <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app retail_billing system init
#   Idempotent bootstrap: creates tables and the store settings row.
# - flask --app retail_billing system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users (identity lives with the auth gateway; the store keeps id + role):
# - flask --app retail_billing users list
#   List all users with role and active status.
# - flask --app retail_billing users create --name "Ada Admin" --email admin@store.local --role ADMIN
#   Create a user. The printed id is what the gateway sends as X-User-Id.
# - flask --app retail_billing users set-role admin@store.local MANAGER
#   Change a user's role.
# - flask --app retail_billing users deactivate cashier@store.local
#   Deactivate a user; their requests are rejected with 401.
#
# Ledger reconciliation:
# - flask --app retail_billing ledger reconcile-stock [--fix]
#   Compare Product.stock with the stock ledger; --fix rewrites stock from the ledger.
# - flask --app retail_billing ledger reconcile-loyalty [--fix]
#   Compare Customer.loyalty_points with the loyalty ledger; --fix rewrites the balance.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .permissions import ALL_ROLES, normalize_role
from .services.activity_service import log_activity
from .services.inventory_service import reconcile_stock
from .services.loyalty_service import reconcile_loyalty
from .services.settings_service import ensure_settings


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create missing tables and the store settings row.

    Safe to run repeatedly. Production schemas should go through
    `flask db upgrade`; this is the quick path for a fresh SQLite file.
    """
    click.echo("START Initializing store...")
    db.create_all()
    settings = ensure_settings()
    db.session.commit()
    click.echo(f"PASS Store settings ready: {settings.store_name} ({settings.currency})")

    if db.session.query(User).count() == 0:
        click.echo("WARN No users yet. Create one with: users create --role ADMIN")
    click.echo("PASS Initialization complete")


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

    click.echo("PASS Database reset complete. Run 'system init' to initialize.")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and management."""


def _role_option(value: str) -> str:
    role = normalize_role(value)
    if role is None:
        raise click.BadParameter(f"role must be one of {', '.join(ALL_ROLES)}")
    return role


def _find_user(email: str) -> User:
    user = db.session.query(User).filter(db.func.lower(User.email) == email.strip().lower()).first()
    if user is None:
        raise click.ClickException(f"User not found: {email}")
    return user


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("=" * 80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<30} {active_str:<8} {user.role}")


@users_group.command('create')
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--role', prompt=True, default='CASHIER', show_default=True)
@with_appcontext
def create_user_cmd(name, email, role):
    """Create a user."""
    role = _role_option(role)
    email = email.strip().lower()

    if db.session.query(User).filter(db.func.lower(User.email) == email).first():
        raise click.ClickException(f"User with email {email} already exists")

    user = User(name=name.strip(), email=email, role=role, is_active=True)
    db.session.add(user)
    db.session.flush()
    log_activity(user_id=None, action="CREATE_USER", entity_type="user", entity_id=user.id, details={"role": role})
    db.session.commit()
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@users_group.command('set-role')
@click.argument('email')
@click.argument('role')
@with_appcontext
def set_role(email, role):
    """Change a user's role."""
    role = _role_option(role)
    user = _find_user(email)
    previous = user.role
    user.role = role
    log_activity(
        user_id=None,
        action="UPDATE_USER_ROLE",
        entity_type="user",
        entity_id=user.id,
        details={"from": previous, "to": role},
    )
    db.session.commit()
    click.echo(f"PASS {user.email}: {previous} -> {role}")


@users_group.command('deactivate')
@click.argument('email')
@with_appcontext
def deactivate_user(email):
    """Deactivate a user. Their requests are rejected from now on."""
    user = _find_user(email)
    if not user.is_active:
        click.echo(f"SKIP {user.email} is already inactive")
        return
    user.is_active = False
    log_activity(user_id=None, action="DEACTIVATE_USER", entity_type="user", entity_id=user.id)
    db.session.commit()
    click.echo(f"PASS Deactivated {user.email}")


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Reconcile materialized balances against their ledgers."""


def _report_drift(drift: list[dict], *, balance_key: str, label: str, fix: bool) -> None:
    if not drift:
        click.echo(f"PASS {label}: no drift")
        return

    for row in drift:
        ident = row.get("product_id", row.get("customer_id"))
        click.echo(
            f"DRIFT #{ident} {row['name']}: {balance_key}={row[balance_key]} "
            f"ledger={row['ledger']} difference={row['difference']}"
        )
    if fix:
        click.echo(f"FIXED {len(drift)} {label} balance(s) rewritten from the ledger")
    else:
        click.echo(f"WARN {len(drift)} {label} balance(s) drifted. Re-run with --fix to repair.")


@ledger_group.command('reconcile-stock')
@click.option('--fix', is_flag=True, help='Rewrite Product.stock from the ledger')
@with_appcontext
def reconcile_stock_cmd(fix):
    drift = reconcile_stock(fix=fix)
    if fix and drift:
        db.session.commit()
    _report_drift(drift, balance_key="stock", label="stock", fix=fix)


@ledger_group.command('reconcile-loyalty')
@click.option('--fix', is_flag=True, help='Rewrite Customer.loyalty_points from the ledger')
@with_appcontext
def reconcile_loyalty_cmd(fix):
    drift = reconcile_loyalty(fix=fix)
    if fix and drift:
        db.session.commit()
    _report_drift(drift, balance_key="loyalty_points", label="loyalty", fix=fix)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
