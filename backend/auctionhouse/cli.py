# Overview: Flask CLI command groups for auction setup and ledger maintenance.

# backend/auctionhouse/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` when migrations are in use).
#
# Auctions:
# - python -m flask auctions list
#   List auctions with status and item counts.
# - python -m flask auctions create --short-name spring26 --full-name "Spring Fair 2026"
#   Create an auction in "setup".
# - python -m flask auctions set-status 1 live
#   Change an auction's status (maintenance rights).
#
# Lots:
# - python -m flask lots renumber 1
#   Re-derive item numbers 1..N for an auction.
#
# Maintenance:
# - python -m flask payments expire-intents
#   Expire pending card intents past their TTL.
# - python -m flask audit purge --before 2026-01-01T00:00:00Z --yes
#   Delete audit entries older than the given time.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .services import audit_service, auction_service, lot_service, payment_service
from .services.auction_state_service import set_auction_status
from .time_utils import parse_iso_datetime


CLI_ACTOR = "cli"


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('auctions')
def auctions_group():
    """Auction management commands."""


@auctions_group.command('list')
@with_appcontext
def list_auctions_cli():
    auctions = auction_service.list_auctions()
    if not auctions:
        click.echo("No auctions found.")
        return
    for a in auctions:
        click.echo(f"{a['id']:>3}  {a['short_name']:<20} {a['status']:<11} items={a['item_count']:<4} {a['full_name']}")


@auctions_group.command('create')
@click.option('--short-name', required=True)
@click.option('--full-name', required=True)
@click.option('--logo', default=None)
@with_appcontext
def create_auction_cli(short_name, full_name, logo):
    try:
        auction = auction_service.create_auction(short_name, full_name, logo, actor=CLI_ACTOR)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created auction {auction.short_name} (ID: {auction.id}, public id: {auction.public_id})")


@auctions_group.command('set-status')
@click.argument('auction_id', type=int)
@click.argument('status')
@with_appcontext
def set_status_cli(auction_id, status):
    try:
        auction = set_auction_status(auction_id, status, actor=CLI_ACTOR, role="maintenance")
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Auction {auction.id} is now {auction.status}")


@click.group('lots')
def lots_group():
    """Lot ledger maintenance."""


@lots_group.command('renumber')
@click.argument('auction_id', type=int)
@with_appcontext
def renumber_cli(auction_id):
    try:
        lot_service.get_auction(auction_id)
        changed = lot_service.renumber_auction_items(auction_id)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"Renumbered {changed} item(s) in auction {auction_id}.")


@click.group('payments')
def payments_group():
    """Payment maintenance."""


@payments_group.command('expire-intents')
@with_appcontext
def expire_intents_cli():
    expired = payment_service.expire_stale_intents()
    click.echo(f"Expired {expired} stale payment intent(s).")


@click.group('audit')
def audit_group():
    """Audit trail maintenance."""


@audit_group.command('purge')
@click.option('--before', default=None, help='ISO-8601 cutoff; omit to purge everything')
@click.option('--yes', is_flag=True, help='Confirm deletion')
@with_appcontext
def purge_audit_cli(before, yes):
    """
    Delete audit entries created before the cutoff.

    This is the only way audit entries are ever removed.
    """
    if not yes:
        raise click.ClickException("Refusing to purge without --yes")
    try:
        cutoff = parse_iso_datetime(before)
    except ValueError:
        raise click.BadParameter(f"Not an ISO-8601 datetime: {before}", param_hint="--before")
    deleted = audit_service.purge_audit_log(before=cutoff)
    click.echo(f"Deleted {deleted} audit log entries.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(auctions_group)
    app.cli.add_command(lots_group)
    app.cli.add_command(payments_group)
    app.cli.add_command(audit_group)
