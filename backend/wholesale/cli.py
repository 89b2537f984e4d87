# Overview: Flask CLI command groups for bootstrap, user tokens and credit inspection.

# backend/wholesale/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Insert an admin, a sales rep, two shops and a few products.
#
# Users:
# - python -m flask users create --email rep@example.com --role sales_rep --first-name Nimal --phone 0771234567
#   Create a user.
# - python -m flask users issue-token rep@example.com --hours 24
#   Print a bearer token for the user (only its hash is stored).
#
# Shops:
# - python -m flask shops credit 1
#   Print a shop's outstanding balance, active bills and available credit.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Shop, User
from .models.auth import ROLE_ADMIN, ROLE_SALES_REP, VALID_ROLES
from .services import credit_service, session_service
from .services.errors import LedgerError
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables (idempotent)."""
    db.create_all()
    click.echo("PASS Tables created.")


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


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Insert demo users, shops and products if the database is empty."""
    if db.session.query(User).count():
        click.echo("SKIP Users already exist; not seeding.")
        return

    now = utcnow()
    admin = User(email="admin@example.com", first_name="Admin", role=ROLE_ADMIN, is_active=True, created_at=now)
    rep = User(
        email="rep@example.com", first_name="Sales", last_name="Rep",
        phone="0771234567", role=ROLE_SALES_REP, is_active=True, created_at=now,
    )
    db.session.add_all([admin, rep])
    db.session.flush()

    db.session.add_all([
        Shop(
            name="Lanka Stores", address="12 Main Street, Kandy", phone="0812345678",
            sales_rep_id=rep.id, max_bill_amount_cents=50_000_00, max_active_bills=3,
            created_at=now, updated_at=now,
        ),
        Shop(
            name="Hill Mart", address="4 Lake Road, Nuwara Eliya", phone="0522345678",
            sales_rep_id=rep.id, max_bill_amount_cents=25_000_00, max_active_bills=2,
            created_at=now, updated_at=now,
        ),
        Product(name="Tea 400g", unit_price_cents=950_00, stock=500, created_at=now, updated_at=now),
        Product(name="Rice 5kg", unit_price_cents=1_450_00, stock=200, created_at=now, updated_at=now),
        Product(name="Sugar 1kg", unit_price_cents=320_00, stock=800, created_at=now, updated_at=now),
    ])
    db.session.commit()
    click.echo("PASS Demo data created (admin@example.com, rep@example.com).")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@click.option('--first-name', default=None, help='First name')
@click.option('--last-name', default=None, help='Last name')
@click.option('--phone', default=None, help='Phone number')
@with_appcontext
def create_user_cli(email, role, first_name, last_name, phone):
    """Create a new admin or sales rep."""
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL User {email} already exists")
        return

    user = User(
        email=email,
        role=role,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        is_active=True,
        created_at=utcnow(),
    )
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created {role} {email} (id={user.id})")


@users_group.command('issue-token')
@click.argument('email')
@click.option('--hours', type=int, default=24, show_default=True, help='Token lifetime in hours')
@with_appcontext
def issue_token_cli(email, hours):
    """Print a bearer token for an existing user."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User {email} not found")
        return

    try:
        _, token = session_service.issue_token(user.id, lifetime=timedelta(hours=hours))
    except LedgerError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(token)


@click.group('shops')
def shops_group():
    """Shop inspection commands."""


@shops_group.command('credit')
@click.argument('shop_id', type=int)
@with_appcontext
def shop_credit_cli(shop_id):
    """Print a shop's live credit position."""
    try:
        state = credit_service.shop_credit_state(shop_id)
    except LedgerError as e:
        click.echo(f"FAIL {e}")
        return

    for key, value in state.to_dict().items():
        click.echo(f"{key:24} {value}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(shops_group)
