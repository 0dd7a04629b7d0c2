# Overview: Flask CLI command groups for bootstrap and maintenance sweeps.

# backend/fulfillment/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Card maintenance (safe to run on a timer):
# - python -m flask cards mark-expired [--tenant-id 1]
#   Move AVAILABLE cards past their expiry to EXPIRED (all tenants when omitted).
# - python -m flask cards release-stale [--minutes 15]
#   Release reservations older than the window and fail their pending orders.
# - python -m flask cards reconcile [--tenant-id 1]
#   Deliver orders stuck in PAID and promote charged PENDING orders.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import inventory_service, maintenance_service, order_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (idempotent)."""
    db.create_all()
    click.echo(f"PASS Database ready: {current_app.config['SQLALCHEMY_DATABASE_URI']}")


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

    click.echo("PASS Database reset complete.")


@click.group('cards')
def cards_group():
    """Card inventory and order maintenance commands."""


@cards_group.command('mark-expired')
@click.option('--tenant-id', type=int, default=None, help='Limit the sweep to one tenant')
@with_appcontext
def mark_expired_cli(tenant_id):
    """Expire AVAILABLE cards whose expiry has passed."""
    if tenant_id is None:
        expired = maintenance_service.expire_all_tenants()
    else:
        expired = inventory_service.mark_expired(tenant_id)
    click.echo(f"Marked {expired} cards as expired.")


@cards_group.command('release-stale')
@click.option('--minutes', type=int, default=None, help='Reservation age in minutes (default: RESERVATION_TIMEOUT_MINUTES)')
@with_appcontext
def release_stale_cli(minutes):
    """Release abandoned reservations."""
    result = maintenance_service.release_stale_reservations(minutes)
    click.echo(
        f"Released {result['released']} cards, failed {result['orders_failed']} pending orders."
    )


@cards_group.command('reconcile')
@click.option('--tenant-id', type=int, default=None)
@with_appcontext
def reconcile_cli(tenant_id):
    """Resume paid orders that were not delivered."""
    result = order_service.resume_paid_orders(tenant_id)
    click.echo(
        f"Promoted {result['promoted']}, delivered {result['delivered']}, failed {result['failed']}."
    )
    if result["failed"]:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(cards_group)
