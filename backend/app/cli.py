# Overview: Flask CLI command groups for bootstrap, account connection, sync and inspection.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to app, the factory package (PowerShell: $env:FLASK_APP="app").
#   Not wsgi.py: importing it starts the scheduler when SYNC_ENABLED is set.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Account connection:
# - python -m flask accounts list [--user-id 1]
#   List accounts with connection and last-sync state.
# - python -m flask accounts create --user-id 1 --name "Main shop" --client-id ID --client-secret SECRET
#   Register API client credentials (account starts disconnected).
# - python -m flask accounts authorize-url --account-id 1 --redirect-uri https://host/callback
#   Print the OAuth authorization URL a human must open to grant access.
# - python -m flask accounts connect --account-id 1 --code CODE --redirect-uri https://host/callback
#   Exchange the authorization code for tokens and mark the account connected.
# - python -m flask accounts status --account-id 1
#   Show whether the account currently holds a valid token.
#
# Sync:
# - python -m flask sync run-once
#   Run a single sync cycle in the foreground and print per-account results.
# - python -m flask sync start
#   Run the recurring scheduler in the foreground until Ctrl-C.
#
# Orders:
# - python -m flask orders list --account-id 1 --user-id 1 [--days 90]
# - python -m flask orders pending --account-id 1 --user-id 1
#   Unprocessed orders an operator may deduct manually.
# - python -m flask orders process --order-id 10 --user-id 1
#   Deduct stock for a pending order (at most once per order).
#
# Stock:
# - python -m flask stock show --product-id 3 --user-id 1 [--movements]

import secrets
import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Account
from .services import reconciliation_service, stock_service
from .services.order_api import OrderSyncError, build_http_client
from .services.reconciliation_service import OrderAlreadyProcessedError, OrderNotFoundError
from .services.token_service import TokenManager, is_authenticated
from .time_utils import to_utc_z


def _get_account(account_id: int) -> Account | None:
    account = db.session.get(Account, account_id)
    if account is None:
        click.echo(f"FAIL Account ID {account_id} not found")
    return account


def _token_manager(client) -> TokenManager:
    return TokenManager.from_config(client, current_app.config)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('accounts')
def accounts_group():
    """External order API account commands."""


@accounts_group.command('list')
@click.option('--user-id', type=int, help='Only accounts owned by this user')
@with_appcontext
def list_accounts(user_id):
    """List accounts with connection and last-sync state."""
    query = db.session.query(Account)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    accounts = query.order_by(Account.id).all()

    if not accounts:
        click.echo("No accounts found")
        return

    for account in accounts:
        active = "active" if account.is_active else "inactive"
        click.echo(
            f"[{account.id}] {account.name} (user {account.user_id}) {active} "
            f"status={account.sync_status} last_sync={to_utc_z(account.last_sync_at) or '-'}"
        )
        if account.last_sync_error:
            click.echo(f"     last error: {account.last_sync_error}")


@accounts_group.command('create')
@click.option('--user-id', type=int, required=True, help='Owning user ID')
@click.option('--name', prompt=True, help='Display name')
@click.option('--client-id', prompt=True, help='OAuth client ID')
@click.option('--client-secret', prompt=True, hide_input=True, help='OAuth client secret')
@with_appcontext
def create_account(user_id, name, client_id, client_secret):
    """Register API client credentials for a user."""
    account = Account(
        user_id=user_id,
        name=name,
        client_id=client_id,
        client_secret=client_secret,
        is_active=False,
    )
    db.session.add(account)
    db.session.commit()
    click.echo(f"PASS Created account: {account.name} (ID: {account.id})")
    click.echo("     Next: flask accounts authorize-url --account-id "
               f"{account.id} --redirect-uri <callback>")


@accounts_group.command('authorize-url')
@click.option('--account-id', type=int, required=True)
@click.option('--redirect-uri', required=True)
@with_appcontext
def authorize_url(account_id, redirect_uri):
    """Print the OAuth authorization URL for an account."""
    account = _get_account(account_id)
    if account is None:
        return

    state = secrets.token_urlsafe(16)
    with build_http_client(timeout=current_app.config["ORDER_API_TIMEOUT_SECONDS"]) as client:
        try:
            url = _token_manager(client).build_authorize_url(account, redirect_uri, state)
        except (OrderSyncError, ValueError) as e:
            click.echo(f"FAIL {e}")
            return

    click.echo(url)
    click.echo(f"state={state}")


@accounts_group.command('connect')
@click.option('--account-id', type=int, required=True)
@click.option('--code', required=True, help='Authorization code from the callback')
@click.option('--redirect-uri', required=True, help='Same redirect URI used for authorize-url')
@with_appcontext
def connect_account(account_id, code, redirect_uri):
    """Exchange an authorization code for tokens."""
    account = _get_account(account_id)
    if account is None:
        return

    with build_http_client(timeout=current_app.config["ORDER_API_TIMEOUT_SECONDS"]) as client:
        try:
            _token_manager(client).exchange_code(account, code, redirect_uri)
        except OrderSyncError as e:
            click.echo(f"FAIL Could not connect account: {e}")
            return

    click.echo(f"PASS Account {account.name} connected; token expires {to_utc_z(account.token_expires_at)}")


@accounts_group.command('status')
@click.option('--account-id', type=int, required=True)
@with_appcontext
def account_status(account_id):
    """Show whether an account holds a valid token."""
    account = _get_account(account_id)
    if account is None:
        return
    authenticated = is_authenticated(account)
    click.echo(f"authenticated={'yes' if authenticated else 'no'} sync_status={account.sync_status}")


@click.group('sync')
def sync_group():
    """Order sync commands."""


def _scheduler():
    return current_app.extensions["order_sync"]


@sync_group.command('run-once')
@with_appcontext
def run_once():
    """Run one sync cycle in the foreground."""
    cycle = _scheduler().run_cycle()
    if cycle is None:
        click.echo("FAIL A sync cycle is already in progress")
        return

    for result in cycle.accounts:
        label = "PASS" if result.success else "FAIL"
        partial = " partial" if result.partial else ""
        click.echo(f"{label} [{result.account_id}] {result.account_name}: fetched {result.fetched}{partial}")
        if result.summary is not None:
            click.echo(f"     {result.summary.to_dict()}")
        if result.error:
            click.echo(f"     error: {result.error}")
    click.echo(f"Cycle done: {cycle.auto_processed} order(s) auto-processed")


@sync_group.command('start')
@with_appcontext
def start_sync():
    """Run the recurring scheduler until interrupted."""
    scheduler = _scheduler()
    scheduler.start()
    click.echo("Order sync running. Press Ctrl-C to stop.")
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop(timeout=30)


@click.group('orders')
def orders_group():
    """Local order store commands."""


def _echo_order(order):
    processed = "processed" if order.is_processed else "pending"
    click.echo(
        f"[{order.id}] #{order.order_number} {order.status} {processed} "
        f"total={order.total_cents / 100:.2f} customer={order.customer_name or '-'}"
    )


@orders_group.command('list')
@click.option('--account-id', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@click.option('--days', type=int, default=90, show_default=True)
@with_appcontext
def list_orders(account_id, user_id, days):
    """List orders first seen in the last N days."""
    orders = reconciliation_service.list_recent_orders(account_id=account_id, user_id=user_id, days=days)
    if not orders:
        click.echo("No orders found")
    for order in orders:
        _echo_order(order)


@orders_group.command('pending')
@click.option('--account-id', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@with_appcontext
def pending_orders(account_id, user_id):
    """List unprocessed orders ready for manual deduction."""
    orders = reconciliation_service.list_pending_orders(account_id=account_id, user_id=user_id)
    if not orders:
        click.echo("No pending orders")
    for order in orders:
        _echo_order(order)


@orders_group.command('process')
@click.option('--order-id', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@with_appcontext
def process_order(order_id, user_id):
    """Deduct stock for one pending order."""
    try:
        result = reconciliation_service.process_order(order_id=order_id, user_id=user_id)
    except (OrderNotFoundError, OrderAlreadyProcessedError) as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Order {order_id} processed: {result.movements_created} movement(s)")
    if result.skipped_no_sku or result.skipped_missing_product:
        click.echo(
            f"     skipped {result.skipped_no_sku} line(s) without SKU, "
            f"{result.skipped_missing_product} without product"
        )


@click.group('stock')
def stock_group():
    """Stock ledger inspection."""


@stock_group.command('show')
@click.option('--product-id', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@click.option('--movements', 'show_movements', is_flag=True, help='Also list recent movements')
@with_appcontext
def show_stock(product_id, user_id, show_movements):
    """Show current stock folded from the movement ledger."""
    try:
        summary = stock_service.get_stock_summary(product_id=product_id, user_id=user_id)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"{summary['sku']} {summary['name']}: {summary['current_stock']}")
    if show_movements:
        for movement in stock_service.list_movements(product_id=product_id, user_id=user_id):
            sign = "+" if movement.type == "ENTRY" else "-"
            click.echo(f"  {to_utc_z(movement.created_at)} {sign}{movement.quantity} {movement.reason or ''}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(accounts_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(stock_group)
