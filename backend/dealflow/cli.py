# Overview: Flask CLI command groups for bootstrap, roster, and maintenance.

# backend/dealflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Use `flask db upgrade` for managed schemas.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Rep roster:
# - python -m flask reps create --user-id u-123 --name "Sam Rep" --level senior --percent 7.5
#   Register a rep mirrored from the external roster.
# - python -m flask reps list [--all]
#   List reps (use --all to include inactive).
# - python -m flask reps deactivate 3
#   Deactivate a rep (no new commissions, no API access).
#
# Maintenance:
# - python -m flask maintenance reconcile-pins [--dry-run]
#   Re-apply the pin status sync for payment-approved deals whose pin missed it.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import pin_service, rep_service
from .validation import ConflictError, ValidationError, bps_to_percent


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask reps create' to add reps.")


@click.group('reps')
def reps_group():
    """Rep roster commands."""


@reps_group.command('create')
@click.option('--user-id', prompt=True, help='External roster user id')
@click.option('--name', 'full_name', default=None, help='Display name')
@click.option('--level', 'commission_level', default='junior', show_default=True,
              type=click.Choice(rep_service.VALID_COMMISSION_LEVELS))
@click.option('--percent', 'default_percent', default=None,
              help='Default commission percent (e.g. 7.5); defaults by level')
@with_appcontext
def create_rep_cli(user_id, full_name, commission_level, default_percent):
    """Register a rep."""
    try:
        rep = rep_service.create_rep(
            user_id=user_id,
            full_name=full_name,
            commission_level=commission_level,
            default_commission_percent=default_percent,
        )
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created rep {rep.id} ({rep.user_id}) at {bps_to_percent(rep.default_commission_percent_bps)}%")


@reps_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive reps')
@with_appcontext
def list_reps_cli(include_inactive):
    """List reps."""
    reps = rep_service.list_reps(include_inactive=include_inactive)
    if not reps:
        click.echo("No reps found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'User ID':<20} {'Name':<25} {'Level':<10} {'Pct':<8} {'Active'}")
    click.echo("="*80)
    for rep in reps:
        click.echo(
            f"{rep.id:<5} {rep.user_id:<20} {(rep.full_name or '-'):<25} {rep.commission_level:<10} "
            f"{bps_to_percent(rep.default_commission_percent_bps):<8} {'Yes' if rep.active else 'No'}"
        )
    click.echo("="*80 + "\n")


@reps_group.command('deactivate')
@click.argument('rep_id', type=int)
@with_appcontext
def deactivate_rep_cli(rep_id):
    """Deactivate a rep."""
    try:
        rep = rep_service.set_rep_active(rep_id, False)
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Rep {rep.id} deactivated.")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('reconcile-pins')
@click.option('--dry-run', is_flag=True, help='Only report pins that need the sync')
@with_appcontext
def reconcile_pins_cli(dry_run):
    """
    Sync pins of payment-approved deals to the installed status.

    Repairs pins whose post-approval sync failed.
    """
    pairs = pin_service.reconcile_approved_pins(dry_run=dry_run)
    if not pairs:
        click.echo("PASS All pins of approved deals are in sync.")
        return

    for deal_id, pin_id in pairs:
        click.echo(f"{'WOULD SYNC' if dry_run else 'SYNCED'} deal {deal_id} -> pin {pin_id}")
    click.echo(f"{'Found' if dry_run else 'Repaired'} {len(pairs)} pin(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(reps_group)
    app.cli.add_command(maintenance_group)
