# Overview: Flask CLI command groups for bootstrap, stock maintenance, and inspection.

# backend/salonpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to salonpos (PowerShell: $env:FLASK_APP="salonpos").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory:
# - python -m flask inventory expire --branch MAIN [--as-of 2025-05-01]
#   Mark past-dated batches expired and recompute stock records. Run daily.
# - python -m flask inventory expiring --branch MAIN --days 30
#   List batches expiring inside the window.
# - python -m flask inventory stock --branch MAIN --product SHAMPOO
#   Show the stock record and batches in FIFO order.
#
# Promotions / loyalty:
# - python -m flask promotions list [--branch MAIN]
# - python -m flask loyalty show C1

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import BillingError
from .services import inventory_service, loyalty_service, promotions_service
from .time_utils import parse_iso_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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


@click.group('inventory')
def inventory_group():
    """Batch and stock maintenance."""


@inventory_group.command('expire')
@click.option('--branch', 'branch_id', required=True, help='Branch id')
@click.option('--as-of', 'as_of', default=None, help='Business date (YYYY-MM-DD), default today')
@click.option('--actor', 'actor_id', default='system', show_default=True)
@with_appcontext
def expire_batches_cli(branch_id, as_of, actor_id):
    """
    Mark expired batches and drop them from stock.

    Example:
        flask inventory expire --branch MAIN
    """
    try:
        batches = inventory_service.mark_expired_batches(branch_id, as_of=parse_iso_date(as_of), actor_id=actor_id)
    except (BillingError, ValueError) as e:
        raise click.ClickException(str(e))

    if not batches:
        click.echo("No batches to expire.")
        return
    for b in batches:
        click.echo(f"EXPIRED {b.batch_number:<24} {b.product_id:<20} remaining={b.remaining_quantity}")
    click.echo(f"PASS {len(batches)} batch(es) marked expired.")


@inventory_group.command('expiring')
@click.option('--branch', 'branch_id', required=True, help='Branch id')
@click.option('--days', type=int, default=None, help='Window in days (default from config)')
@with_appcontext
def expiring_batches_cli(branch_id, days):
    """List batches expiring soon, soonest first."""
    try:
        batches = inventory_service.get_expiring_batches(branch_id, days_ahead=days)
    except BillingError as e:
        raise click.ClickException(e.message)

    if not batches:
        click.echo("No batches expiring in the window.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'Batch':<24} {'Product':<20} {'Expires':<12} {'Remaining':<10} {'Usage'}")
    click.echo("="*90)
    for b in batches:
        click.echo(
            f"{b.batch_number:<24} {b.product_id:<20} {b.expiration_date.isoformat():<12} "
            f"{b.remaining_quantity:<10} {b.usage_type}"
        )
    click.echo("="*90 + "\n")


@inventory_group.command('stock')
@click.option('--branch', 'branch_id', required=True)
@click.option('--product', 'product_id', required=True)
@with_appcontext
def stock_cli(branch_id, product_id):
    """Show real-time stock and batches for one product."""
    stock = inventory_service.get_real_time_stock(branch_id, product_id)
    click.echo(f"{branch_id} / {product_id}: real_time_stock={stock}")
    for b in inventory_service.list_product_batches(branch_id, product_id):
        expires = b.expiration_date.isoformat() if b.expiration_date else "-"
        click.echo(f"  {b.batch_number:<24} {expires:<12} {b.remaining_quantity:>6} {b.usage_type:<10} {b.status}")


@click.group('promotions')
def promotions_group():
    """Promotion inspection."""


@promotions_group.command('list')
@click.option('--branch', 'branch_id', default=None)
@with_appcontext
def list_promotions_cli(branch_id):
    promos = promotions_service.list_active_promotions(branch_id)
    if not promos:
        click.echo("No active promotions.")
        return
    for p in promos:
        limit = p.usage_limit_global if p.usage_limit_global is not None else "-"
        click.echo(f"{p.code:<16} {p.discount_type:<11} {p.discount_value!s:<10} used={p.usage_count}/{limit}")


@click.group('loyalty')
def loyalty_group():
    """Loyalty inspection."""


@loyalty_group.command('show')
@click.argument('client_id')
@with_appcontext
def show_loyalty_cli(client_id):
    balances = loyalty_service.get_all_branch_loyalty_points(client_id)
    if not balances:
        click.echo(f"No loyalty accounts for {client_id}.")
        return
    for row in balances:
        click.echo(f"{row['branch_id']:<16} {row['points_balance']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(promotions_group)
    app.cli.add_command(loyalty_group)
