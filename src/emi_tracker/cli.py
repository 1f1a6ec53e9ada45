"""
EMI Tracker - Flask CLI commands

Registered on the app by create_app(), so they run as:

    flask --app emi_tracker.api:create_app init-db
    flask --app emi_tracker.api:create_app create-admin "Asha" asha@example.com secret123
    flask --app emi_tracker.api:create_app seed-demo asha@example.com
"""

import click
from flask import current_app
from flask.cli import with_appcontext

from .demo_data import generate_demo_data
from .engine import ROLES
from .migration_runner import migration_status, run_all_pending
from .setup_sqlite import create_database, reset_database, verify_schema


def _engine():
    return current_app.extensions['finance_engine']


@click.command("init-db")
@click.option("--reset", is_flag=True, help="Drop every table first. Deletes all data.")
@with_appcontext
def init_db(reset):
    """Create the database schema and apply pending migrations."""
    db_path = current_app.config['DATABASE_PATH']
    if reset:
        click.confirm(f"This deletes ALL data in {db_path}. Continue?", abort=True)
        ok = reset_database(db_path)
    else:
        ok = create_database(db_path)
    if not ok:
        raise click.ClickException("Database creation failed. See log for details.")

    applied = run_all_pending(db_path)
    missing = verify_schema(db_path)
    if missing:
        raise click.ClickException(f"Missing tables: {', '.join(missing)}")
    click.echo(f"[OK] Database ready at {db_path} ({applied} migration(s) applied)")


@click.command("migrate")
@click.option("--status", "show_status", is_flag=True, help="List migrations instead of applying them.")
@with_appcontext
def migrate(show_status):
    """Apply pending schema migrations."""
    db_path = current_app.config['DATABASE_PATH']
    if show_status:
        for item in migration_status(db_path):
            mark = "x" if item['applied'] else " "
            click.echo(f"[{mark}] {item['version']:03d} {item['description']}")
        return
    applied = run_all_pending(db_path)
    click.echo(f"[OK] {applied} migration(s) applied")


@click.command("create-admin")
@click.argument("name")
@click.argument("email")
@click.argument("password")
@click.option("--role", type=click.Choice(ROLES), default="super_admin", show_default=True)
@with_appcontext
def create_admin(name, email, password, role):
    """Create an administrator account."""
    success, message, user = _engine().create_user('super_admin', name, email, password, role=role)
    if not success:
        raise click.ClickException(message)
    click.echo(f"[OK] {message} id={user['id']} role={user['role']}")


@click.command("seed-demo")
@click.argument("email")
@click.option("--seed", type=int, default=None, help="Seed for repeatable data.")
@with_appcontext
def seed_demo(email, seed):
    """Fill an existing account with demo EMIs, payments and history."""
    user = _engine().find_user_by_email(email)
    if not user:
        raise click.ClickException(f"No user with email {email}")
    created = generate_demo_data(_engine(), user['id'], seed=seed)
    for kind, count in created.items():
        click.echo(f"  {kind}: {count}")


@click.command("pending")
@click.argument("email")
@click.option("--days", type=int, default=30, show_default=True)
@with_appcontext
def pending(email, days):
    """Show unpaid payment occurrences for a user."""
    user = _engine().find_user_by_email(email)
    if not user:
        raise click.ClickException(f"No user with email {email}")

    transactions = _engine().get_upcoming_payment_transactions(user['id'], days=days)
    if not transactions:
        click.echo("Nothing pending.")
        return
    for tx in transactions:
        click.echo(
            f"{tx['paymentDate'].isoformat()}  {tx['paymentName']:<30} "
            f"{tx['amount']:>12,.2f}  {tx['dueStatus']}"
        )


def register_commands(app):
    for command in (init_db, migrate, create_admin, seed_demo, pending):
        app.cli.add_command(command)
