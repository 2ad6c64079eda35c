# Overview: Flask CLI command groups for bootstrap, user inspection, and maintenance.

# stampwallet/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv and install the package (pip install -e .).
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with verification status and owned business.
# - python -m flask users create --email owner@example.com --password "Password123" --verified
#   Create a user without sending a confirmation email.
#
# Maintenance:
# - python -m flask maintenance expire-transactions --batch-size 100
#   Expire every active transaction past its TTL (one sweep).
# - python -m flask maintenance sweep --interval 60
#   Run the expiry sweep in a loop until interrupted.
# - python -m flask maintenance cleanup-tokens
#   Delete expired, recalled and used tokens past the retention window.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import Business, User
from .services import auth_service, maintenance_service
from .services.store import OperationContext
from .services.transaction_service import DEFAULT_SWEEP_BATCH_SIZE


def _wallet():
    return current_app.extensions["stampwallet"]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
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

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--verified', is_flag=True, help='Mark the email as already confirmed')
@with_appcontext
def create_user_cmd(email, password, verified):
    """Create a user directly; no confirmation email is sent."""
    try:
        email = auth_service.validate_email(email)
        password_hash = auth_service.hash_password(password)
    except LedgerError as e:
        raise click.ClickException(e.detail)

    if auth_service.get_user_by_email(email) is not None:
        raise click.ClickException(f"User '{email}' already exists")

    user = User(email=email, password_hash=password_hash, email_verified=verified)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.email} (public id {user.public_id}, verified={user.email_verified})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with verification status and owned business."""
    users = db.session.query(User).filter(User.deleted_at.is_(None)).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    businesses = {
        b.owner_id: b
        for b in db.session.query(Business).filter(Business.deleted_at.is_(None)).all()
    }
    click.echo(f"\n{'ID':<5} {'Email':<35} {'Verified':<9} {'Business':<30}")
    click.echo("-" * 80)
    for user in users:
        business = businesses.get(user.id)
        click.echo(
            f"{user.id:<5} {user.email:<35} {str(user.email_verified):<9} "
            f"{business.name if business else '-':<30}"
        )
    click.echo("")


@click.group('maintenance')
def maintenance_group():
    """Background maintenance commands."""


@maintenance_group.command('expire-transactions')
@click.option('--batch-size', type=int, default=DEFAULT_SWEEP_BATCH_SIZE, show_default=True)
@with_appcontext
def expire_transactions_cli(batch_size):
    """Expire every active transaction past its TTL."""
    expired = maintenance_service.expire_transactions(_wallet().transactions, batch_size=batch_size)
    click.echo(f"Expired {expired} transactions.")


@maintenance_group.command('sweep')
@click.option('--interval', type=float, default=60.0, show_default=True, help='Seconds between sweeps')
@click.option('--batch-size', type=int, default=DEFAULT_SWEEP_BATCH_SIZE, show_default=True)
@with_appcontext
def sweep_cli(interval, batch_size):
    """Run the transaction expiry sweep until interrupted (Ctrl+C)."""
    ctx = OperationContext()
    click.echo(f"Sweeping every {interval}s (batch size {batch_size}). Ctrl+C to stop.")
    try:
        total = maintenance_service.run_sweeper(
            _wallet().transactions, interval=interval, batch_size=batch_size, ctx=ctx
        )
    except KeyboardInterrupt:
        ctx.cancel()
        click.echo("\nSweeper stopped.")
        return
    click.echo(f"Expired {total} transactions.")


@maintenance_group.command('cleanup-tokens')
@with_appcontext
def cleanup_tokens_cli():
    """Delete expired, recalled and used tokens past the retention window."""
    deleted = maintenance_service.cleanup_tokens()
    click.echo(f"Deleted {deleted} tokens.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
