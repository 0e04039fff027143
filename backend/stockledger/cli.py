# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: default branch plus admin, salesperson and mechanic users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Branch directory:
# - python -m flask branches list
# - python -m flask branches create --code MNL --name "Manila Branch" --address "..." --phone "..."
#
# Product catalog:
# - python -m flask products list
# - python -m flask products create --sku OIL-5W30 --name "Engine Oil 5W-30" --cost-cents 800 --price-cents 1200
#
# Users:
# - python -m flask users list [--branch-id 1]
# - python -m flask users create --username ana --email ana@stockledger.local --password "Password123!" --role salesperson --branch-id 1
#   Create a user (prompts if options are omitted).
#
# Stock inspection:
# - python -m flask stock low [--branch-id 1]
#   Records at or below their reorder point.

import click
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .models import Branch, Product, User
from .models.auth import ROLE_ADMIN, ROLE_MECHANIC, ROLE_SALESPERSON, USER_ROLES
from .services import stock_service
from .services.auth_service import create_user


DEFAULT_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--branch-code', default='MAIN', help='Default branch code')
@click.option('--branch-name', default='Main Branch', help='Default branch name')
@with_appcontext
def init_system(branch_code, branch_name):
    """
    Initialize StockLedger: default branch and one user per role.

    Creates (when missing):
    - Branch MAIN
    - Users: admin/admin@stockledger.local, sales/sales@stockledger.local,
      mechanic/mechanic@stockledger.local
    - All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing StockLedger...")

    branch = db.session.query(Branch).filter_by(code=branch_code).first()
    if not branch:
        branch = Branch(code=branch_code, name=branch_name, is_active=True)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created default branch: {branch.name} (ID: {branch.id}, Code: {branch.code})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    defaults = [
        ("admin", ROLE_ADMIN, None),
        ("sales", ROLE_SALESPERSON, branch.id),
        ("mechanic", ROLE_MECHANIC, branch.id),
    ]
    for username, role, branch_id in defaults:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"SKIP User {username} already exists")
            continue
        create_user(
            username=username,
            email=f"{username}@stockledger.local",
            password=DEFAULT_PASSWORD,
            role=role,
            branch_id=branch_id,
        )
        click.echo(f"PASS Created user {username} ({role})")

    click.echo("DONE StockLedger initialized.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('branches')
def branches_group():
    """Branch directory commands."""


@branches_group.command('list')
@with_appcontext
def list_branches():
    branches = db.session.query(Branch).order_by(Branch.id).all()
    if not branches:
        click.echo("No branches found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Code':<10} {'Name':<30} {'Active':<8}")
    click.echo("="*80)
    for branch in branches:
        click.echo(f"{branch.id:<5} {branch.code:<10} {branch.name:<30} {'Yes' if branch.is_active else 'No':<8}")
    click.echo("="*80 + "\n")


@branches_group.command('create')
@click.option('--code', prompt=True, help='Unique branch code')
@click.option('--name', prompt=True, help='Branch name')
@click.option('--address', default=None)
@click.option('--phone', default=None)
@with_appcontext
def create_branch(code, name, address, phone):
    if db.session.query(Branch).filter_by(code=code).first():
        raise click.ClickException(f"Branch code {code} already exists")
    branch = Branch(code=code, name=name, address=address, phone=phone, is_active=True)
    db.session.add(branch)
    db.session.commit()
    click.echo(f"PASS Created branch {branch.code} (ID: {branch.id})")


@click.group('products')
def products_group():
    """Product catalog commands."""


@products_group.command('list')
@with_appcontext
def list_products():
    products = db.session.query(Product).order_by(Product.sku).all()
    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'SKU':<16} {'Name':<36} {'Cost':>10} {'Price':>10}")
    click.echo("="*90)
    for p in products:
        click.echo(
            f"{p.id:<5} {p.sku:<16} {p.name:<36} "
            f"{p.default_cost_price_cents:>10} {p.default_selling_price_cents:>10}"
        )
    click.echo("="*90 + "\n")


@products_group.command('create')
@click.option('--sku', prompt=True)
@click.option('--name', prompt=True)
@click.option('--description', default=None)
@click.option('--cost-cents', type=click.IntRange(min=0), default=0, show_default=True)
@click.option('--price-cents', type=click.IntRange(min=0), default=0, show_default=True)
@with_appcontext
def create_product(sku, name, description, cost_cents, price_cents):
    if db.session.query(Product).filter_by(sku=sku).first():
        raise click.ClickException(f"SKU {sku} already exists")
    product = Product(
        sku=sku,
        name=name,
        description=description,
        default_cost_price_cents=cost_cents,
        default_selling_price_cents=price_cents,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product {product.sku} (ID: {product.id})")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(USER_ROLES), prompt=True, help='Role')
@click.option('--branch-id', type=int, default=None, help='Branch (required for non-admin roles)')
@with_appcontext
def create_user_cli(username, email, password, role, branch_id):
    try:
        user = create_user(username=username, email=email, password=password, role=role, branch_id=branch_id)
    except ServiceError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@click.option('--branch-id', type=int, default=None, help='Filter by branch')
@with_appcontext
def list_users(branch_id):
    """List all users with their role and branch."""
    query = db.session.query(User)
    if branch_id:
        query = query.filter_by(branch_id=branch_id)

    users = query.order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Branch':<8} {'Username':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*100)
    for user in users:
        branch = str(user.branch_id) if user.branch_id else "-"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {branch:<8} {user.username:<20} {user.email:<30} {active_str:<8} {user.role}")
    click.echo("="*100 + "\n")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('low')
@click.option('--branch-id', type=int, default=None, help='Limit to one branch')
@with_appcontext
def low_stock(branch_id):
    """Records at or below their reorder point."""
    records = stock_service.list_low_stock(branch_id=branch_id)
    if not records:
        click.echo("No low-stock records.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'Branch':<8} {'SKU':<16} {'Name':<30} {'Qty':>6} {'Rsv':>6} {'Reorder@':>9}")
    click.echo("="*90)
    for r in records:
        click.echo(
            f"{r.branch_id:<8} {r.product.sku:<16} {r.product.name:<30} "
            f"{r.quantity:>6} {r.reserved_quantity:>6} {r.reorder_point:>9}"
        )
    click.echo("="*90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(products_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
