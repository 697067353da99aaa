# Overview: Flask CLI command groups for bootstrap, inspection, and ledger maintenance.

# Usage (from backend/, with FLASK_APP=wsgi.py):
#   flask system init [--admin-password ...]   tables + default admin, safe to re-run
#   flask system seed                          sample beers/spirits and a staff login
#   flask system reset-db --yes                drop and recreate everything (dev only)
#   flask users create | list
#   flask crates balances                      crates owed per tracked product
#   flask crates verify                        replay every ledger; exit 1 on mismatch

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, ProductCategory, UnitType, User, UserRole
from .services import auth_service, crate_service
from .validation import ServiceError


@click.group('system')
def system_group():
    """Database bootstrap and sample data."""


@system_group.command('init')
@click.option('--admin-username', default='admin', help='Username of the default admin')
@click.option('--admin-password', default='admin123', help='Password of the default admin')
@with_appcontext
def init_system(admin_username, admin_password):
    """
    Create tables and the default admin user.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing CellarPOS...")

    db.create_all()
    click.echo("PASS Tables ready")

    existing = db.session.query(User).filter_by(username=admin_username.lower()).first()
    if existing:
        click.echo(f"PASS Admin user already exists: {existing.username}")
        return

    try:
        user = auth_service.create_user(
            username=admin_username,
            password=admin_password,
            full_name="System Administrator",
            role=UserRole.ADMIN,
        )
    except ServiceError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created admin user: {user.username}")


SAMPLE_PRODUCTS = [
    # name, category, unit type, cost cents, selling cents, stock, crate tracked
    ("Tusker Lager 500ml Crate", ProductCategory.BEER, UnitType.CRATE, 240000, 290000, 40, True),
    ("Pilsner 500ml Crate", ProductCategory.BEER, UnitType.CRATE, 230000, 280000, 30, True),
    ("White Cap 500ml Crate", ProductCategory.BEER, UnitType.CRATE, 250000, 300000, 25, True),
    ("Smirnoff Vodka 750ml", ProductCategory.VODKA, UnitType.BOTTLE, 120000, 160000, 24, False),
    ("Gilbey's Gin 750ml", ProductCategory.GIN, UnitType.BOTTLE, 110000, 150000, 18, False),
    ("Four Cousins Red 750ml", ProductCategory.WINE, UnitType.BOTTLE, 90000, 130000, 12, False),
]


@system_group.command('seed')
@with_appcontext
def seed_data():
    """Add sample products and a staff user (skips anything that already exists)."""
    created = 0
    for name, category, unit_type, cost, price, stock, tracked in SAMPLE_PRODUCTS:
        if db.session.query(Product).filter_by(name=name).first():
            continue
        db.session.add(Product(
            name=name,
            category=category,
            unit_type=unit_type,
            cost_price_cents=cost,
            selling_price_cents=price,
            current_stock=stock,
            minimum_stock=10,
            has_crate_tracking=tracked,
        ))
        created += 1
    db.session.commit()
    click.echo(f"PASS Created {created} sample products")

    if not db.session.query(User).filter_by(username="staff").first():
        auth_service.create_user(username="staff", password="staff123", full_name="Counter Staff")
        click.echo("PASS Created staff user: staff")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@with_appcontext
def reset_db(yes):
    """Drop and recreate every table. Sales, deliveries and the crate ledger are lost."""
    if not yes:
        click.confirm("WARN Every sale, delivery and crate entry will be erased. Continue?", abort=True)

    db.drop_all()
    db.create_all()
    click.echo("PASS Schema recreated (empty). Next: flask system init")


@click.group('users')
def users_group():
    """Staff accounts."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Login name (stored lower-case)')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='At least 6 characters')
@click.option('--role', type=click.Choice(['admin', 'staff']), default='staff', show_default=True, help='Role')
@with_appcontext
def create_user_cli(username, full_name, password, role):
    """Create a new user."""
    try:
        user = auth_service.create_user(username=username, password=password, full_name=full_name, role=role)
    except ServiceError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user: {user.username} with role '{user.role.value}'")


@users_group.command('list')
@with_appcontext
def list_users():
    users = auth_service.list_users()
    if not users:
        click.echo("No accounts yet. Run: flask system init")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Full name':<25} {'Role':<8} {'Active'}")
    click.echo("="*70)
    for user in users:
        state = "active" if user.is_active else "disabled"
        click.echo(f"{user.id:<5} {user.username:<20} {user.full_name:<25} {user.role.value:<8} {state}")
    click.echo("="*70 + "\n")


@click.group('crates')
def crates_group():
    """Crate ledger inspection commands."""


@crates_group.command('balances')
@with_appcontext
def crate_balances():
    """Show crates owed per active crate-tracked product."""
    balances = crate_service.get_all_balances()
    if not balances:
        click.echo("No crate-tracked products.")
        return
    for row in balances:
        click.echo(f"{row['product_id']:<5} {row['product_name']:<35} {row['current_balance']:>6}  {row['last_updated'] or '-'}")


@crates_group.command('verify')
@with_appcontext
def crate_verify():
    """Replay every product's ledger and compare with the stored balances."""
    reports = crate_service.verify_ledger()
    failures = [r for r in reports if not r["consistent"]]

    for report in reports:
        status = "PASS" if report["consistent"] else "FAIL"
        click.echo(
            f"{status} product={report['product_id']} entries={report['entries']} "
            f"stored={report['stored_balance']} replayed={report['replayed_balance']}"
        )
        for problem in report["problems"]:
            click.echo(f"     {problem}")

    if failures:
        raise click.ClickException(f"{len(failures)} product ledger(s) inconsistent")
    click.echo(f"PASS {len(reports)} product ledger(s) consistent")


def register_commands(app):
    for group in (system_group, users_group, crates_group):
        app.cli.add_command(group)
